"""Configuration loading from YAML and credential source resolution.

Two independent files configure a login:

* **Login config** -- how the local flow behaves (nonce, timeout, callback
  listener). See :class:`~oidclogin.models.LoginConfig`::

      include_nonce: true
      timeout: 90

* **OIDC config** -- the client registration at the provider. See
  :class:`~oidclogin.models.OIDCConfig`::

      provider: https://accounts.example.com
      client_id: my-cli
      secret: env:MY_CLI_SECRET
      scopes: [openid, email, offline_access]

The ``secret`` value may be a credential source descriptor
(:func:`resolve_credential`) so that secrets stay out of the file.
"""

from __future__ import annotations

import getpass
import os
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from oidclogin.exceptions import ConfigError
from oidclogin.models import LoginConfig, OIDCConfig

_SOURCE_PREFIXES = ("env:", "file:")


def _parse_yaml(content: str, kind: str) -> dict[str, Any]:
    """Parse *content* into a mapping, raising ConfigError on failure."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config: Failed to parse {kind} config file: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Config: Failed to parse {kind} config file: expected a mapping "
            f"(got {type(data).__name__})"
        )
    return data


def _validate(model: type[BaseModel], data: dict[str, Any], kind: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Config: Invalid {kind} config: {exc}") from exc


def _read(path: str | Path) -> str:
    path = Path(path).expanduser()
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Config: Cannot read {path}: {exc}") from exc


def login_config_from_yaml(content: str) -> LoginConfig:
    """Parse a :class:`~oidclogin.models.LoginConfig` from YAML text.

    An empty document yields the defaults.

    Raises:
        ConfigError: If the YAML is invalid or fails validation.
    """
    data = _parse_yaml(content, "login")
    return _validate(LoginConfig, data, "login")


def oidc_config_from_yaml(content: str) -> OIDCConfig:
    """Parse an :class:`~oidclogin.models.OIDCConfig` from YAML text.

    A ``secret`` written as ``env:VAR`` or ``file:/path`` is resolved
    through :func:`resolve_credential`; any other value is used as is.

    Raises:
        ConfigError: If the YAML is invalid, fails validation, or the
            secret source cannot be resolved.
    """
    data = _parse_yaml(content, "OIDC")
    config: OIDCConfig = _validate(OIDCConfig, data, "OIDC")

    secret = config.client_secret
    if secret.startswith(_SOURCE_PREFIXES) or secret == "prompt":
        config = config.model_copy(update={"client_secret": resolve_credential(secret)})
    return config


def load_login_config(path: str | Path) -> LoginConfig:
    """Read and parse a login config file."""
    return login_config_from_yaml(_read(path))


def load_oidc_config(path: str | Path) -> OIDCConfig:
    """Read and parse an OIDC config file."""
    return oidc_config_from_yaml(_read(path))


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)

    Any other string is returned unchanged.

    Args:
        source: The source descriptor string.

    Returns:
        The resolved credential string.

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        file_path = source[5:]
        path = Path(file_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter credential: ")

    return source
