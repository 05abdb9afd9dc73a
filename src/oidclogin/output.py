"""Terminal output for the oidclogin CLI.

The token (or discovery document) a command produces is the only thing
written to stdout, so ``oidclogin login --json > token.json`` captures a
clean payload. Everything meant for the person at the keyboard goes to
stderr: the authorization URL to open by hand, the login result, warnings
and errors.

Rich rendering is used when stdout is a terminal; piped output falls back
to plain text. ``NO_COLOR``, ``TERM=dumb`` and ``--no-color`` turn colour
off.

:func:`~oidclogin.app.main_callback` installs one :class:`OutputManager`
with :func:`set_output`; library code calls the module-level helpers.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.syntax import Syntax


class OutputFormat(str, Enum):
    """How payloads are rendered on stdout."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Route payloads to stdout and login diagnostics to stderr.

    Args:
        format: Payload format. ``AUTO`` picks ``RICH`` on a colour
            terminal and ``PLAIN`` otherwise.
        no_color: Disable colour and Rich markup.
        quiet: Hide progress messages (the browser prompt, the success
            line). Warnings and errors are always shown.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet

        if format == OutputFormat.AUTO:
            rich_ok = _is_tty() and not self._no_color
            format = OutputFormat.RICH if rich_ok else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    def format_response(self, data: Any) -> None:
        """Write a token or metadata payload to stdout."""
        if self._format == OutputFormat.PLAIN:
            self._print_plain(data)
            return
        text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        if self._format == OutputFormat.JSON:
            self.print_data(text)
        else:
            self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))

    def print_data(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    def info(self, message: str) -> None:
        """Progress message on stderr; hidden by ``--quiet``."""
        if not self._quiet:
            self._diagnostic(message, "")

    def success(self, message: str) -> None:
        if not self._quiet:
            self._diagnostic(message, "", style="green")

    def warning(self, message: str) -> None:
        self._diagnostic(message, "Warning: ", style="yellow")

    def error(self, message: str) -> None:
        self._diagnostic(message, "Error: ", style="bold red")

    def _diagnostic(self, message: str, prefix: str, style: Optional[str] = None) -> None:
        if self._no_color:
            print(f"{prefix}{message}", file=sys.stderr, flush=True)
        elif style is None:
            self._stderr.print(f"{prefix}{message}", markup=False, highlight=False)
        else:
            self._stderr.print(f"{prefix}{message}", style=style, markup=False)

    def _print_plain(self, data: Any) -> None:
        # One "key<TAB>value" line per field, so `cut -f2` works on a token.
        if isinstance(data, dict):
            for key, value in data.items():
                self.print_data(f"{key}\t{'' if value is None else value}")
        elif isinstance(data, list):
            for item in data:
                self.print_data(str(item))
        else:
            self.print_data(str(data))


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set (any value) or ``TERM=dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Global instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, creating a default one."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager; used between tests."""
    global _output
    _output = None


def format_response(data: Any) -> None:
    get_output().format_response(data)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)
