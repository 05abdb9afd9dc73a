"""Token exchange client for an OpenID Connect provider.

:class:`Client` talks to the provider's HTTP endpoints:

1. :meth:`Client.discover` fetches the discovery document
   (``<issuer>/.well-known/openid-configuration``).
2. :meth:`Client.auth_code_url` builds the URL the user's browser opens.
3. :meth:`Client.exchange` trades an authorization code for a
   :class:`~oidclogin.models.Token`.
4. :meth:`Client.refresh` trades a refresh token for a new one.

Every network method accepts an optional ``http_client``. When given it
takes precedence over the client-wide default passed to the constructor
(see :func:`resolve_http_client`); when neither is set the module-level
``httpx`` functions are used.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from oidclogin.exceptions import DiscoveryError, TokenExchangeError, TokenRefreshError
from oidclogin.models import OIDCConfig, ProviderMetadata, Token
from oidclogin.oidc.verifier import ClaimsVerifier, Verifier

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"

GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"
GRANT_TYPE_REFRESH_TOKEN = "refresh_token"

DEFAULT_TIMEOUT = 30.0


def resolve_http_client(
    override: Optional[httpx.Client],
    default: Optional[httpx.Client],
) -> Optional[httpx.Client]:
    """Pick the HTTP client for one request.

    A request-scoped *override* wins over the flow-wide *default*.
    """
    if override is not None:
        return override
    return default


class Client:
    """HTTP client for one OpenID Connect provider.

    Args:
        metadata: The provider's discovery metadata.
        http_client: Default :class:`httpx.Client` for every request.
        timeout: Per-request timeout in seconds, used when no
            ``http_client`` is involved.
    """

    def __init__(
        self,
        metadata: ProviderMetadata,
        http_client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.metadata = metadata
        self.http_client = http_client
        self.timeout = timeout

    @classmethod
    def discover(
        cls,
        provider_url: str,
        http_client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Client:
        """Fetch the discovery document of *provider_url* and build a client.

        Args:
            provider_url: Issuer URL, e.g. ``https://accounts.example.com``.
            http_client: Default HTTP client for the returned instance.
            timeout: Request timeout in seconds.

        Raises:
            DiscoveryError: If the document cannot be fetched, is missing
                required endpoints, or names a different issuer.
        """
        url = provider_url.rstrip("/") + DISCOVERY_PATH
        try:
            if http_client is not None:
                response = http_client.get(url, headers={"Accept": "application/json"})
            else:
                response = httpx.get(
                    url, headers={"Accept": "application/json"}, timeout=timeout
                )
            response.raise_for_status()
            doc: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            raise DiscoveryError(
                f"OpenID discovery failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DiscoveryError(f"OpenID discovery failed: {exc}") from exc
        except ValueError as exc:
            raise DiscoveryError(f"OpenID discovery returned invalid JSON: {exc}") from exc

        for field in ("issuer", "authorization_endpoint", "token_endpoint"):
            if field not in doc:
                raise DiscoveryError(f"OpenID discovery document missing '{field}'")

        try:
            metadata = ProviderMetadata.model_validate(doc)
        except ValidationError as exc:
            raise DiscoveryError(f"Invalid OpenID discovery document: {exc}") from exc

        if metadata.issuer.rstrip("/") != provider_url.rstrip("/"):
            raise DiscoveryError(
                f"Issuer did not match the provider URL. "
                f"Expected: {provider_url}, got: {metadata.issuer}"
            )

        logger.debug("Discovered OpenID provider %s", metadata.issuer)
        return cls(metadata, http_client=http_client, timeout=timeout)

    @property
    def issuer(self) -> str:
        return self.metadata.issuer

    def auth_code_url(
        self,
        oidc_config: OIDCConfig,
        state: str,
        redirect_uri: str,
        nonce: Optional[str] = None,
    ) -> str:
        """Build the authorization request URL for the code flow."""
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": oidc_config.client_id,
            "redirect_uri": redirect_uri,
            "state": state,
        }
        if oidc_config.scopes:
            params["scope"] = " ".join(oidc_config.scopes)
        if nonce:
            params["nonce"] = nonce

        endpoint = self.metadata.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    def exchange(
        self,
        oidc_config: OIDCConfig,
        code: str,
        redirect_uri: str,
        http_client: Optional[httpx.Client] = None,
    ) -> Token:
        """Exchange an authorization code for a token.

        Raises:
            TokenExchangeError: On HTTP errors or an invalid token response.
        """
        form = {
            "grant_type": GRANT_TYPE_AUTHORIZATION_CODE,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        return self._token(
            oidc_config.client_id,
            oidc_config.client_secret,
            form,
            http_client,
            TokenExchangeError,
            "Token exchange",
        )

    def refresh(
        self,
        client_id: str,
        client_secret: str,
        form: dict[str, str],
        http_client: Optional[httpx.Client] = None,
    ) -> Token:
        """Post a ``grant_type=refresh_token`` request built by the caller.

        Raises:
            TokenRefreshError: On HTTP errors or an invalid token response.
        """
        return self._token(
            client_id, client_secret, form, http_client, TokenRefreshError, "Token refresh"
        )

    def verifier(self, client_id: str) -> Verifier:
        """Return a verifier for tokens issued by this provider to *client_id*."""
        return ClaimsVerifier(client_id=client_id, issuer=self.issuer)

    def _token(
        self,
        client_id: str,
        client_secret: str,
        form: dict[str, str],
        http_client: Optional[httpx.Client],
        error_cls: type[TokenExchangeError] | type[TokenRefreshError],
        action: str,
    ) -> Token:
        data = dict(form)
        data["client_id"] = client_id
        if client_secret:
            data["client_secret"] = client_secret

        url = self.metadata.token_endpoint
        client = resolve_http_client(http_client, self.http_client)
        try:
            if client is not None:
                response = client.post(url, data=data, headers={"Accept": "application/json"})
            else:
                response = httpx.post(
                    url,
                    data=data,
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )
            response.raise_for_status()
            token_data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            raise error_cls(
                f"{action} failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"{action} failed: {exc}") from exc
        except ValueError as exc:
            raise error_cls(f"{action} returned invalid JSON: {exc}") from exc

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise error_cls(f"{action} response missing 'access_token' field")

        try:
            return Token.from_response(token_data)
        except (ValueError, TypeError, OverflowError) as exc:
            raise error_cls(f"{action} returned an invalid token: {exc}") from exc
