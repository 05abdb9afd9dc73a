"""oidclogin -- OpenID Connect Authorization Code login for command-line tools.

This package lets a local, non-browser client log a user in through their
browser and keep the resulting credential fresh for the rest of the
session. The user's browser is sent to the provider, the redirect lands on
a short-lived local HTTP listener, and the authorization code is exchanged
for tokens.

Typical usage::

    from oidclogin.login import LoginFlow
    from oidclogin.oidc import Client

    client = Client.discover(oidc_config.provider)
    flow = LoginFlow(client, oidc_config)
    token = flow.login(timeout=120)
    source = flow.token_source(token)
    source.token()  # cached, refreshed when it stops being valid

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: YAML configuration loading and credential sources.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
