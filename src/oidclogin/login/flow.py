"""Interactive OIDC Authorization Code login for command-line tools.

:class:`LoginFlow` drives one login per :meth:`LoginFlow.login` call:

1. Creates a :class:`~oidclogin.login.callback.LoginAttempt` with a fresh
   random ``state`` (and ``nonce`` when ``nonce_check`` is on).
2. Binds a :class:`~oidclogin.login.callback.CallbackServer` on a free
   local port and serves it on a background thread.
3. Opens the user's browser at the provider's authorization URL.
4. Waits for the single outcome, the timeout, or cancellation.
5. Shuts the listener down on every exit path and returns the token or
   raises the error.

The resulting token is typically wrapped with :meth:`LoginFlow.token_source`
so it is refreshed transparently for the rest of the session.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import httpx

from oidclogin import output
from oidclogin.auth.sources import ReuseTokenSource, TokenRefresher
from oidclogin.exceptions import BrowserLaunchError, ListenerError
from oidclogin.login.browser import open_browser
from oidclogin.login.callback import CallbackResponses, CallbackServer, LoginAttempt
from oidclogin.models import LoginConfig, OIDCConfig, Token
from oidclogin.oidc.client import Client

logger = logging.getLogger(__name__)


class LoginFlow:
    """Run the browser-based authorization code flow against one provider.

    Args:
        client: Token exchange client of the provider.
        oidc_config: Client registration (id, secret, scopes).
        login_config: Local flow settings. Defaults to :class:`LoginConfig`.
        responses: Pages shown in the browser after the redirect.
        open_browser: Callable opening a URL. Defaults to
            :func:`~oidclogin.login.browser.open_browser`; applications that
            display the URL themselves pass their own.
    """

    def __init__(
        self,
        client: Client,
        oidc_config: OIDCConfig,
        login_config: Optional[LoginConfig] = None,
        responses: Optional[CallbackResponses] = None,
        open_browser: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.client = client
        self.oidc_config = oidc_config
        self.login_config = login_config or LoginConfig()
        self.responses = responses or CallbackResponses()
        self._open_browser = open_browser

    def login(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> Token:
        """Log the user in through their browser and return the token.

        Args:
            timeout: Seconds to wait for the redirect. Defaults to
                ``login_config.timeout``.
            cancel: Event that aborts the wait when set.
            http_client: HTTP client for the code exchange, overriding the
                exchange client's default.

        Raises:
            ListenerError: If the local listener cannot be bound.
            LoginTimeoutError: If no redirect arrived in time.
            LoginCancelledError: If *cancel* was set.
            CallbackError: If the redirect failed state or code checks.
            ProviderError: If the provider reported an error.
            TokenExchangeError: If the code exchange failed.
        """
        if timeout is None:
            timeout = self.login_config.timeout

        attempt = LoginAttempt(nonce_check=self.login_config.nonce_check)
        host = self.login_config.callback_host
        try:
            server = CallbackServer(
                (host, 0),
                attempt,
                self.client,
                self.oidc_config,
                callback_path=self.login_config.callback_path,
                responses=self.responses,
                http_client=http_client,
            )
        except OSError as exc:
            raise ListenerError(f"Failed to start callback listener on {host}: {exc}") from exc

        thread = threading.Thread(
            target=server.serve_forever, name="oidclogin-callback", daemon=True
        )
        thread.start()
        logger.info("Callback listener started at %s", server.redirect_uri)

        try:
            auth_url = self.client.auth_code_url(
                self.oidc_config,
                attempt.state,
                server.redirect_uri,
                nonce=attempt.nonce,
            )
            self._launch_browser(auth_url)
            outcome = attempt.wait(timeout=timeout, cancel=cancel)
        finally:
            server.shutdown()
            server.server_close()
            logger.info("Callback listener stopped")

        return outcome.result()

    def token_source(
        self,
        token: Token,
        http_client: Optional[httpx.Client] = None,
    ) -> ReuseTokenSource:
        """Wrap a login result in a cache that refreshes it when needed."""
        refresher = TokenRefresher(
            self.client, self.oidc_config, token.refresh_token, http_client=http_client
        )
        return ReuseTokenSource(refresher, token=token)

    def _launch_browser(self, url: str) -> None:
        output.info("Opening browser for login. If it does not open, visit:")
        output.info(url)
        opener = self._open_browser or open_browser
        try:
            opener(url)
        except BrowserLaunchError as exc:
            # The listener stays up; the user can still open the URL by hand.
            logger.warning("%s", exc)
            output.warning(f"{exc}. Open the URL above manually.")


def login(
    client: Client,
    oidc_config: OIDCConfig,
    login_config: Optional[LoginConfig] = None,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    http_client: Optional[httpx.Client] = None,
) -> Token:
    """Run a single :class:`LoginFlow` and return its token."""
    flow = LoginFlow(client, oidc_config, login_config)
    return flow.login(timeout=timeout, cancel=cancel, http_client=http_client)
