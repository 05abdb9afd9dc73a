"""Local HTTP endpoint receiving the provider's authorization redirect.

One :class:`CallbackServer` serves one :class:`LoginAttempt`. The first
request to the callback path claims the attempt, is validated against the
attempt's ``state``, and on success has its ``code`` exchanged for a token.
Exactly one :class:`CallbackOutcome` -- a token or the first error met -- is
handed to the waiting login flow through the attempt's single-slot queue.

The browser always receives the same neutral page. Error details go only
to the process that started the login; override the page with
:class:`CallbackResponses`.
"""

from __future__ import annotations

import hmac
import logging
import queue
import threading
import time
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlsplit

import httpx

from oidclogin.exceptions import (
    AttemptConcludedError,
    AuthError,
    LoginCancelledError,
    LoginTimeoutError,
    MalformedCallbackError,
    MissingCodeError,
    MissingStateError,
    NonceMismatchError,
    ProviderError,
    StateMismatchError,
    VerificationError,
)
from oidclogin.login.state import rand128_bits
from oidclogin.models import OIDCConfig, Token
from oidclogin.oidc.client import Client, resolve_http_client
from oidclogin.oidc.verifier import decode_claims

logger = logging.getLogger(__name__)

CODE_PARAM = "code"
STATE_PARAM = "state"
ERROR_PARAM = "error"
ERROR_DESCRIPTION_PARAM = "error_description"

COMPLETED_MESSAGE = "OIDC authentication flow is completed. You can close browser tab."

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_MAX_BODY_BYTES = 64 * 1024
_WAIT_SLICE = 0.1


# ------------------------------------------------------------------ #
# Browser responses
# ------------------------------------------------------------------ #


def _write_text(handler: BaseHTTPRequestHandler, status: int, body: str) -> None:
    payload = body.encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "text/plain; charset=utf-8")
    handler.send_header("Content-Length", str(len(payload)))
    handler.send_header("Cache-Control", "no-store")
    handler.end_headers()
    handler.wfile.write(payload)


def default_success_response(handler: BaseHTTPRequestHandler) -> None:
    """Answer a successful callback with the completion message."""
    _write_text(handler, 200, COMPLETED_MESSAGE)


def default_error_response(handler: BaseHTTPRequestHandler, error: Exception) -> None:
    """Answer a failed callback with the same completion message.

    The browser is not told what went wrong; the error reaches the login
    flow instead.
    """
    _write_text(handler, 200, COMPLETED_MESSAGE)


@dataclass(frozen=True)
class CallbackResponses:
    """Renderers for the page shown in the browser after the redirect.

    Attributes:
        success: Called with the request handler after a successful login.
        failure: Called with the request handler and the error after a
            failed one.
    """

    success: Callable[[BaseHTTPRequestHandler], None] = default_success_response
    failure: Callable[[BaseHTTPRequestHandler, Exception], None] = default_error_response


# ------------------------------------------------------------------ #
# Attempt and outcome
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class CallbackOutcome:
    """Result of a login attempt: either a token or an error."""

    token: Optional[Token] = None
    error: Optional[BaseException] = None

    def result(self) -> Token:
        """Return the token, or raise the error."""
        if self.error is not None:
            raise self.error
        if self.token is None:
            raise AuthError("Login attempt concluded without a token")
        return self.token


class LoginAttempt:
    """State of one interactive login.

    Holds a fresh random ``state`` (and ``nonce`` when requested), and a
    queue of size one through which exactly one outcome is delivered.
    Attempts are never reused.

    Args:
        nonce_check: Also generate a nonce the ID token must echo.
    """

    def __init__(self, nonce_check: bool = False) -> None:
        self.state = rand128_bits()
        self.nonce: Optional[str] = rand128_bits() if nonce_check else None
        self._outcome: queue.Queue[CallbackOutcome] = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self._claimed = False

    @property
    def claimed(self) -> bool:
        with self._lock:
            return self._claimed

    def claim(self) -> bool:
        """Reserve the attempt for the calling request.

        Returns:
            ``True`` for the first caller, ``False`` for everyone after.
        """
        with self._lock:
            if self._claimed:
                return False
            self._claimed = True
            return True

    def conclude(self, outcome: CallbackOutcome) -> None:
        """Deliver the outcome. Only the request holding the claim calls this."""
        self._outcome.put_nowait(outcome)

    def wait(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> CallbackOutcome:
        """Block until the outcome arrives.

        Args:
            timeout: Seconds to wait. ``None`` waits indefinitely.
            cancel: Event that aborts the wait when set.

        Raises:
            LoginTimeoutError: If *timeout* elapses first.
            LoginCancelledError: If *cancel* is set first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if cancel is not None and cancel.is_set():
                raise LoginCancelledError("Login cancelled while waiting for the browser redirect")

            block: Optional[float] = None
            if deadline is not None:
                block = deadline - time.monotonic()
                if block <= 0:
                    raise LoginTimeoutError(
                        f"Timed out after {timeout:g}s waiting for the browser redirect"
                    )
            if cancel is not None:
                block = _WAIT_SLICE if block is None else min(block, _WAIT_SLICE)

            try:
                return self._outcome.get(timeout=block)
            except queue.Empty:
                continue


# ------------------------------------------------------------------ #
# Request parsing
# ------------------------------------------------------------------ #


def _first(form: dict[str, list[str]], key: str) -> str:
    values = form.get(key)
    return values[0] if values else ""


def parse_form(query: str, body: Optional[bytes] = None) -> dict[str, list[str]]:
    """Decode the callback's query string and optional urlencoded body.

    Body values come before query values for the same key.

    Raises:
        MalformedCallbackError: If either part cannot be decoded.
    """
    try:
        form = parse_qs(query, keep_blank_values=True, errors="strict")
        if body:
            for key, values in parse_qs(
                body.decode("utf-8"), keep_blank_values=True, errors="strict"
            ).items():
                form[key] = values + form.get(key, [])
    except ValueError as exc:
        raise MalformedCallbackError(f"Failed to parse request form. Err: {exc}") from exc
    return form


def parse_callback_request(form: dict[str, list[str]], expected_state: str) -> str:
    """Validate a decoded callback and return its authorization code.

    Checks run in this order: ``state`` present, ``state`` equal to
    *expected_state*, no provider ``error``, ``code`` present.

    State equality comes before the provider error rather than after the
    code check. A redirect with a foreign ``state`` therefore raises
    :class:`StateMismatchError` even when it also carries ``error=``; an
    ``error`` is only passed through for this attempt's own ``state``.

    Raises:
        MissingStateError: No ``state`` parameter.
        StateMismatchError: ``state`` differs from *expected_state*.
        ProviderError: The provider reported an error.
        MissingCodeError: No ``code`` parameter.
    """
    state = _first(form, STATE_PARAM)
    if not state:
        raise MissingStateError("User session error. No state parameter.")

    if not hmac.compare_digest(state.encode("utf-8"), expected_state.encode("utf-8")):
        raise StateMismatchError(
            f"Invalid state parameter. Got {state}, expected: {expected_state}"
        )

    error_code = _first(form, ERROR_PARAM)
    if error_code:
        raise ProviderError(error_code, _first(form, ERROR_DESCRIPTION_PARAM))

    code = _first(form, CODE_PARAM)
    if not code:
        raise MissingCodeError("Missing code token.")
    return code


def check_nonce(token: Token, expected_nonce: str) -> None:
    """Require the token's ID token to carry *expected_nonce*.

    Raises:
        NonceMismatchError: If the ID token is missing, undecodable, or
            carries another nonce.
    """
    if not token.id_token:
        raise NonceMismatchError("Nonce check requested but token has no ID token")
    try:
        claims = decode_claims(token.id_token)
    except VerificationError as exc:
        raise NonceMismatchError(f"Cannot read nonce from ID token: {exc}") from exc

    nonce = str(claims.get("nonce", ""))
    if not hmac.compare_digest(nonce.encode("utf-8"), expected_nonce.encode("utf-8")):
        raise NonceMismatchError("ID token nonce does not match the login attempt")


# ------------------------------------------------------------------ #
# Server
# ------------------------------------------------------------------ #


class CallbackHandler(BaseHTTPRequestHandler):
    """Handle the provider redirect for the attempt owned by the server."""

    server: CallbackServer

    def do_GET(self) -> None:
        self._handle(post=False)

    def do_POST(self) -> None:
        # response_mode=form_post
        self._handle(post=True)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def _handle(self, post: bool) -> None:
        server = self.server
        url = urlsplit(self.path)
        if url.path != server.callback_path:
            self.send_error(404)
            return

        attempt = server.attempt
        if not attempt.claim():
            logger.info("Ignoring callback for a login attempt that already concluded")
            server.responses.failure(
                self, AttemptConcludedError("Login attempt already concluded")
            )
            return

        try:
            body = self._read_body() if post else None
            form = parse_form(url.query, body)
            code = parse_callback_request(form, attempt.state)
            token = server.client.exchange(
                server.oidc_config,
                code,
                server.redirect_uri,
                http_client=resolve_http_client(server.http_client, server.client.http_client),
            )
            if attempt.nonce is not None:
                check_nonce(token, attempt.nonce)
        except AuthError as exc:
            logger.info("Login callback failed: %s", exc)
            self._fail(exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error while handling login callback")
            self._fail(exc)
            return

        attempt.conclude(CallbackOutcome(token=token))
        server.responses.success(self)

    def _fail(self, exc: Exception) -> None:
        self.server.attempt.conclude(CallbackOutcome(error=exc))
        self.server.responses.failure(self, exc)

    def _read_body(self) -> Optional[bytes]:
        content_type = self.headers.get("Content-Type", "")
        if content_type.split(";", 1)[0].strip().lower() != _FORM_CONTENT_TYPE:
            return None
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError as exc:
            raise MalformedCallbackError(f"Failed to parse request form. Err: {exc}") from exc
        if length < 0 or length > _MAX_BODY_BYTES:
            raise MalformedCallbackError(
                f"Failed to parse request form. Err: invalid body length {length}"
            )
        return self.rfile.read(length)


class CallbackServer(ThreadingHTTPServer):
    """Ephemeral HTTP server bound to one login attempt.

    Request threads are daemons and are not joined on close, so tearing
    the server down never waits for an in-flight exchange.

    Args:
        address: ``(host, port)`` to bind; port ``0`` picks a free one.
        attempt: The login attempt this server reports to.
        client: Token exchange client.
        oidc_config: Client registration used for the exchange.
        callback_path: Path of the redirect URI.
        responses: Browser page renderers.
        http_client: Request-scoped HTTP client overriding the client's
            default for the exchange.
    """

    daemon_threads = True
    block_on_close = False

    def __init__(
        self,
        address: tuple[str, int],
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        callback_path: str = "/callback",
        responses: Optional[CallbackResponses] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(address, CallbackHandler)
        self.host = address[0]
        self.attempt = attempt
        self.client = client
        self.oidc_config = oidc_config
        self.callback_path = callback_path
        self.responses = responses or CallbackResponses()
        self.http_client = http_client

    @property
    def port(self) -> int:
        return self.server_address[1]

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{self.callback_path}"
