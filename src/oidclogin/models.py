"""Canonical Pydantic models shared across all oidclogin modules.

The models fall into two groups:

**Configuration models** -- loaded from YAML by :mod:`oidclogin.config`:
    :class:`LoginConfig` and :class:`OIDCConfig`.

**Protocol models** -- produced by the provider and passed between the
login flow and the token sources:
    :class:`Token` and :class:`ProviderMetadata`.

A :class:`Token` is frozen. Once a token source hands it out, several
threads may hold it at the same time, so nobody may change it in place;
refreshed credentials are new instances.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

EXPIRY_LEEWAY = timedelta(seconds=10)
"""Tokens are treated as expired this long before their real expiry."""


# --- Config ---


class LoginConfig(BaseModel):
    """Login configuration. It does not contain the OIDC client configuration.

    Example::

        LoginConfig(nonce_check=True, timeout=60)
    """

    model_config = ConfigDict(populate_by_name=True)

    nonce_check: bool = Field(
        default=False,
        alias="include_nonce",
        description="Send a nonce and require the ID token to echo it",
    )
    timeout: float = Field(
        default=120.0, gt=0, description="Seconds to wait for the browser redirect"
    )
    callback_host: str = Field(
        default="127.0.0.1", description="Interface the callback listener binds to"
    )
    callback_path: str = Field(
        default="/callback", description="Path of the redirect URI"
    )


class OIDCConfig(BaseModel):
    """OIDC client registration used for the authorization code flow.

    Example::

        OIDCConfig(
            provider="https://accounts.example.com",
            client_id="cli",
            client_secret="s3cr3t",
            scopes=["openid", "email"],
        )
    """

    model_config = ConfigDict(populate_by_name=True)

    # Canonical URL of the issuer that end users authenticate against.
    provider: str
    client_id: str
    client_secret: str = Field(default="", alias="secret")
    scopes: list[str] = Field(default_factory=list)


class ProviderMetadata(BaseModel):
    """Subset of an OpenID Connect discovery document.

    Unknown keys are preserved in ``model_extra``.
    """

    model_config = ConfigDict(extra="allow")

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: Optional[str] = None
    userinfo_endpoint: Optional[str] = None


# --- Token ---


class Token(BaseModel):
    """Credential bundle issued by the provider.

    Attributes:
        access_token: Opaque access token.
        token_type: Token type, ``Bearer`` unless the provider says otherwise.
        refresh_token: Optional refresh token for ``grant_type=refresh_token``.
        id_token: Optional OpenID Connect ID token (a JWT).
        expiry: Optional UTC expiry. ``None`` means the token does not expire.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expiry: Optional[datetime] = None

    @classmethod
    def from_response(cls, data: dict[str, Any], now: datetime | None = None) -> Token:
        """Build a token from a token endpoint JSON body.

        ``expires_in`` (seconds) is converted to an absolute :attr:`expiry`.

        Raises:
            KeyError: If ``access_token`` is missing.
        """
        now = now or datetime.now(timezone.utc)
        expiry = None
        expires_in = data.get("expires_in")
        if expires_in not in (None, ""):
            expiry = now + timedelta(seconds=float(expires_in))
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token") or None,
            id_token=data.get("id_token") or None,
            expiry=expiry,
        )

    @property
    def expired(self) -> bool:
        """Whether the token is past (or within the leeway of) its expiry."""
        if self.expiry is None:
            return False
        expiry = self.expiry
        if expiry.tzinfo is None:
            # Naive datetimes are taken to be UTC.
            expiry = expiry.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) >= expiry - EXPIRY_LEEWAY

    def authorization_header(self) -> dict[str, str]:
        """Return the ``Authorization`` header carrying the access token."""
        return {"Authorization": f"{self.token_type} {self.access_token}"}
