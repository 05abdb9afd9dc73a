"""Open URLs in the user's default browser."""

from __future__ import annotations

import subprocess
import sys

from oidclogin.exceptions import BrowserLaunchError


def _opener_command() -> list[str]:
    """Return the OS-specific command that opens a URL."""
    if sys.platform.startswith("win"):
        # The empty argument is the window title consumed by ``start``.
        return ["cmd", "/c", "start", ""]
    if sys.platform == "darwin":
        return ["open"]
    # Linux and the BSDs
    return ["xdg-open"]


def open_browser(url: str) -> None:
    """Open *url* in the default browser without waiting for it.

    Raises:
        BrowserLaunchError: If the opener command cannot be started.
    """
    if sys.platform.startswith("win"):
        # cmd.exe treats a bare & as a command separator.
        url = url.replace("&", "^&")
    cmd = _opener_command() + [url]
    try:
        subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=not sys.platform.startswith("win"),
        )
    except OSError as exc:
        raise BrowserLaunchError(f"Failed to open browser with '{cmd[0]}': {exc}") from exc
