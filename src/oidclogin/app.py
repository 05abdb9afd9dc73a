"""Typer application and CLI entry point for oidclogin.

Commands:

* ``login`` -- run the browser login and print the token as JSON.
* ``refresh`` -- trade a refresh token for a new token.
* ``discover`` -- print a provider's discovery metadata.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. :class:`~oidclogin.exceptions.OIDCLoginError` is turned
into an error message and the matching exit code.
"""

from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import typer

from oidclogin import __version__
from oidclogin.exceptions import OIDCLoginError
from oidclogin.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE
from oidclogin.models import Token

app = typer.Typer(
    name="oidclogin",
    help="Log in to an OpenID Connect provider from the command line.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"oidclogin {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Initialise output and logging from the global flags."""
    from oidclogin.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet))

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )


def _token_payload(token: Token) -> dict[str, Any]:
    return token.model_dump(mode="json")


def _fail(exc: OIDCLoginError) -> typer.Exit:
    from oidclogin.output import error

    error(str(exc))
    return typer.Exit(code=exc.exit_code)


@app.command("login")
def login_command(
    oidc_config_path: Path = typer.Option(
        ..., "--oidc-config", help="YAML file with provider, client_id, secret, scopes."
    ),
    login_config_path: Optional[Path] = typer.Option(
        None, "--login-config", help="YAML file with login settings."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser redirect."
    ),
) -> None:
    """Log in through the browser and print the resulting token.

    Example::

        oidclogin login --oidc-config oidc.yaml --timeout 60
    """
    from oidclogin.config import load_login_config, load_oidc_config
    from oidclogin.login import LoginFlow
    from oidclogin.oidc import Client
    from oidclogin.output import format_response, success

    try:
        oidc_config = load_oidc_config(oidc_config_path)
        login_config = load_login_config(login_config_path) if login_config_path else None
        client = Client.discover(oidc_config.provider)
        token = LoginFlow(client, oidc_config, login_config).login(timeout=timeout)
    except OIDCLoginError as exc:
        raise _fail(exc) from None

    success("Login successful.")
    format_response(_token_payload(token))


@app.command("refresh")
def refresh_command(
    oidc_config_path: Path = typer.Option(
        ..., "--oidc-config", help="YAML file with provider, client_id, secret, scopes."
    ),
    refresh_token: str = typer.Option(
        ...,
        "--refresh-token",
        help="Refresh token source: env:VAR, file:/path, prompt, or the literal token.",
    ),
) -> None:
    """Refresh a token and print it."""
    from oidclogin.auth import ReuseTokenSource, TokenRefresher
    from oidclogin.config import load_oidc_config, resolve_credential
    from oidclogin.oidc import Client
    from oidclogin.output import format_response

    try:
        oidc_config = load_oidc_config(oidc_config_path)
        client = Client.discover(oidc_config.provider)
        source = ReuseTokenSource(
            TokenRefresher(client, oidc_config, resolve_credential(refresh_token))
        )
        token = source.token()
    except OIDCLoginError as exc:
        raise _fail(exc) from None

    format_response(_token_payload(token))


@app.command("discover")
def discover_command(
    provider: str = typer.Option(..., "--provider", help="Issuer URL of the provider."),
) -> None:
    """Print the provider's discovery metadata."""
    from oidclogin.oidc import Client
    from oidclogin.output import format_response

    try:
        client = Client.discover(provider)
    except OIDCLoginError as exc:
        raise _fail(exc) from None

    format_response(client.metadata.model_dump(mode="json", exclude_none=True))


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _handler)


def main() -> None:
    """CLI entry point invoked by the ``oidclogin`` console script.

    Commands report :class:`~oidclogin.exceptions.OIDCLoginError` themselves;
    anything else reaching this point is unexpected and exits with
    :data:`~oidclogin.exit_codes.EXIT_GENERIC_FAILURE`.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except Exception as exc:
        from oidclogin.output import error

        error(f"Unexpected error: {exc}")
        sys.exit(EXIT_GENERIC_FAILURE)
