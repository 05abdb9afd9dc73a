"""Token sources: static, refreshing, and reusing.

The sources compose. The usual stack after an interactive login is::

    ReuseTokenSource(TokenRefresher(client, oidc_config, refresh_token), token=login_token)

:class:`TokenRefresher` is not safe for concurrent use because it rotates
its refresh token in place. :class:`ReuseTokenSource` serialises every call
to the source it wraps, so a refresher must only be reached through one.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

import httpx

from oidclogin.auth.base import TokenSource
from oidclogin.exceptions import TokenRefreshError, VerificationError
from oidclogin.models import OIDCConfig, Token
from oidclogin.oidc.client import GRANT_TYPE_REFRESH_TOKEN, Client
from oidclogin.oidc.verifier import Verifier

logger = logging.getLogger(__name__)


class ReuseTokenSource(TokenSource):
    """Hold one token in memory and validate it before each use.

    When the cached token is missing or fails verification, a new one is
    taken from the wrapped *source*. The lock is held for the whole
    check-refresh-replace sequence, so concurrent callers wait for a
    single in-flight refresh instead of issuing their own.

    Args:
        source: Source called when the cached token is not usable.
        token: Optional initial token, e.g. the result of a login.
    """

    def __init__(self, source: TokenSource, token: Optional[Token] = None) -> None:
        self._source = source
        self._lock = threading.Lock()
        self._token = token

    @property
    def source(self) -> TokenSource:
        return self._source

    def token(self) -> Token:
        """Return the cached token if still valid, else a new one from the source.

        A failed refresh propagates and leaves the cache as it was, so the
        next call retries.
        """
        with self._lock:
            if self._token is not None:
                try:
                    self._validate(self._token)
                    return self._token
                except VerificationError as exc:
                    logger.debug("Token not valid. Obtaining new one. Cause: %s", exc)
            else:
                logger.debug("No token to reuse. Obtaining new one")

            token = self._source.token()
            self._token = token
            return token

    def verifier(self) -> Optional[Verifier]:
        """Return the verifier of the wrapped source."""
        return self._source.verifier()

    def reset(self) -> None:
        """Drop the cached token so the next :meth:`token` call refreshes."""
        with self._lock:
            self._token = None

    def _validate(self, token: Token) -> None:
        verifier = self.verifier()
        if verifier is None:
            if token.expired:
                raise VerificationError(f"Token expired at {token.expiry}")
            return
        verifier.verify(token)


class TokenRefresher(TokenSource):
    """Obtain tokens with ``grant_type=refresh_token`` requests.

    Not safe for concurrent use: each successful call may replace the held
    refresh token with a rotated one. Wrap it in a
    :class:`ReuseTokenSource`, which serialises calls with its own lock.

    Args:
        client: Token exchange client of the provider.
        oidc_config: Client credentials and scopes.
        refresh_token: Initial refresh token. Empty means none.
        http_client: Optional HTTP client for refresh requests.
    """

    def __init__(
        self,
        client: Client,
        oidc_config: OIDCConfig,
        refresh_token: Optional[str],
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client
        self._config = oidc_config
        self._refresh_token = refresh_token or ""
        self._http_client = http_client

    @property
    def refresh_token(self) -> str:
        """The refresh token the next call will send."""
        return self._refresh_token

    def token(self) -> Token:
        """Refresh and return a new token.

        The returned token's ID token is not verified here; use
        :meth:`verifier`.

        Raises:
            TokenRefreshError: If no refresh token is held, or the
                provider rejects the request.
        """
        if not self._refresh_token:
            raise TokenRefreshError("Token expired and refresh token is not set")

        form = {
            "grant_type": GRANT_TYPE_REFRESH_TOKEN,
            "refresh_token": self._refresh_token,
        }
        if self._config.scopes:
            form["scope"] = " ".join(self._config.scopes)

        token = self._client.refresh(
            self._config.client_id,
            self._config.client_secret,
            form,
            http_client=self._http_client,
        )

        if not token.refresh_token:
            # Provider did not rotate; keep using the current one.
            return token.model_copy(update={"refresh_token": self._refresh_token})
        if token.refresh_token != self._refresh_token:
            logger.debug("Provider rotated the refresh token")
            self._refresh_token = token.refresh_token
        return token

    def verifier(self) -> Verifier:
        """Return the provider's verifier for the configured client id."""
        return self._client.verifier(self._config.client_id)


class StaticTokenSource(TokenSource):
    """Always return the same token.

    The token is never refreshed, so this is only useful for tokens that
    do not expire.
    """

    def __init__(self, token: Token) -> None:
        self._token = token

    def token(self) -> Token:
        return self._token

    def verifier(self) -> None:
        """Return ``None``; a static token has nothing to re-verify."""
        return None
