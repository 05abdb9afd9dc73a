"""Shared test fixtures for oidclogin.

Provides provider metadata, client configuration, token builders, and
output-state management. These fixtures are automatically discovered by
pytest and available to all test modules without explicit imports.
"""

from __future__ import annotations

import base64
import json
import time
from typing import Any

import pytest

from oidclogin.models import OIDCConfig, ProviderMetadata
from oidclogin.oidc.client import Client
from oidclogin.output import OutputFormat, OutputManager, reset_output, set_output

ISSUER = "https://accounts.example.com"


def make_id_token(**claims: Any) -> str:
    """Build an unsigned JWT carrying *claims* (plus defaults for exp/aud/iss)."""
    payload: dict[str, Any] = {
        "iss": ISSUER,
        "aud": "test-client",
        "sub": "user-1",
        "exp": int(time.time()) + 3600,
        "iat": int(time.time()),
    }
    payload.update(claims)

    def _b64(data: dict[str, Any]) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(payload)}.sig"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def discovery_doc() -> dict[str, Any]:
    """Raw discovery document of the test provider."""
    return {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/authorize",
        "token_endpoint": f"{ISSUER}/token",
        "jwks_uri": f"{ISSUER}/keys",
    }


@pytest.fixture
def provider_metadata(discovery_doc: dict[str, Any]) -> ProviderMetadata:
    return ProviderMetadata.model_validate(discovery_doc)


@pytest.fixture
def client(provider_metadata: ProviderMetadata) -> Client:
    """A real Client for the test provider; tests mock its network methods."""
    return Client(provider_metadata)


@pytest.fixture
def oidc_config() -> OIDCConfig:
    return OIDCConfig(
        provider=ISSUER,
        client_id="test-client",
        client_secret="test-secret",
        scopes=["openid", "email"],
    )


@pytest.fixture
def id_token_factory():
    """Return :func:`make_id_token` for tests that need unsigned ID tokens."""
    return make_id_token
