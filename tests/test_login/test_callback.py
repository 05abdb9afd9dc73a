"""Tests for the login callback server, attempt, and request validation.

Integration-style tests spin up a real :class:`CallbackServer` on a free
loopback port and talk to it with :class:`http.client.HTTPConnection`.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from http.client import HTTPConnection
from http.server import BaseHTTPRequestHandler
from typing import Any, Iterator
from unittest.mock import MagicMock, patch
from urllib.parse import urlencode

import pytest

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
    TokenExchangeError,
)
from oidclogin.login.callback import (
    COMPLETED_MESSAGE,
    CallbackOutcome,
    CallbackResponses,
    CallbackServer,
    LoginAttempt,
    check_nonce,
    parse_callback_request,
    parse_form,
)
from oidclogin.models import OIDCConfig, Token
from oidclogin.oidc.client import Client


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _running_server(
    attempt: LoginAttempt,
    client: Client,
    oidc_config: OIDCConfig,
    **kwargs: Any,
) -> Iterator[CallbackServer]:
    server = CallbackServer(("127.0.0.1", 0), attempt, client, oidc_config, **kwargs)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()


def _request(
    port: int,
    path: str,
    method: str = "GET",
    body: bytes = b"",
    headers: dict[str, str] | None = None,
) -> tuple[int, str]:
    """Send a request to the local callback server and return (status, body)."""
    conn = HTTPConnection("127.0.0.1", port, timeout=5)
    conn.request(method, path, body=body, headers=headers or {})
    response = conn.getresponse()
    data = response.read().decode("utf-8", errors="replace")
    conn.close()
    return response.status, data


def _callback_path(**params: str) -> str:
    return f"/callback?{urlencode(params)}"


@pytest.fixture()
def attempt() -> LoginAttempt:
    return LoginAttempt()


@pytest.fixture()
def exchange(client: Client) -> Iterator[MagicMock]:
    with patch.object(
        client, "exchange", return_value=Token(access_token="at", refresh_token="rt")
    ) as mock_exchange:
        yield mock_exchange


# ---------------------------------------------------------------------------
# LoginAttempt
# ---------------------------------------------------------------------------


class TestLoginAttempt:
    def test_state_is_unique_per_attempt(self) -> None:
        states = {LoginAttempt().state for _ in range(1000)}
        assert len(states) == 1000

    def test_state_is_unpadded_base64url_of_128_bits(self) -> None:
        state = LoginAttempt().state
        assert len(state) == 22
        assert "=" not in state
        assert set(state) <= set(
            "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
        )

    def test_nonce_only_when_requested(self) -> None:
        assert LoginAttempt().nonce is None
        with_nonce = LoginAttempt(nonce_check=True)
        assert with_nonce.nonce is not None
        assert with_nonce.nonce != with_nonce.state

    def test_empty_outcome_raises_auth_error(self) -> None:
        with pytest.raises(AuthError, match="without a token"):
            CallbackOutcome().result()

    def test_claim_succeeds_once(self, attempt: LoginAttempt) -> None:
        assert attempt.claimed is False
        assert attempt.claim() is True
        assert attempt.claim() is False
        assert attempt.claimed is True

    def test_wait_returns_outcome(self, attempt: LoginAttempt) -> None:
        token = Token(access_token="at")
        attempt.conclude(CallbackOutcome(token=token))
        assert attempt.wait(timeout=1).result() is token

    def test_wait_times_out(self, attempt: LoginAttempt) -> None:
        with pytest.raises(LoginTimeoutError, match="Timed out"):
            attempt.wait(timeout=0.1)

    def test_wait_cancelled(self, attempt: LoginAttempt) -> None:
        cancel = threading.Event()
        threading.Timer(0.1, cancel.set).start()
        with pytest.raises(LoginCancelledError):
            attempt.wait(timeout=5, cancel=cancel)

    def test_outcome_result_raises_error(self) -> None:
        outcome = CallbackOutcome(error=MissingCodeError("Missing code token."))
        with pytest.raises(MissingCodeError):
            outcome.result()


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------


class TestParseCallbackRequest:
    def test_returns_code(self) -> None:
        assert parse_callback_request({"state": ["A"], "code": ["c1"]}, "A") == "c1"

    def test_missing_state(self) -> None:
        with pytest.raises(MissingStateError, match="No state parameter"):
            parse_callback_request({"code": ["c1"]}, "A")

    def test_empty_state(self) -> None:
        with pytest.raises(MissingStateError):
            parse_callback_request({"state": [""], "code": ["c1"]}, "A")

    def test_state_mismatch(self) -> None:
        with pytest.raises(StateMismatchError, match="Got B, expected: A"):
            parse_callback_request({"state": ["B"], "code": ["c1"]}, "A")

    def test_state_compared_exactly(self) -> None:
        with pytest.raises(StateMismatchError):
            parse_callback_request({"state": ["a"], "code": ["c1"]}, "A")

    def test_state_checked_before_provider_error(self) -> None:
        form = {"state": ["B"], "error": ["access_denied"]}
        with pytest.raises(StateMismatchError):
            parse_callback_request(form, "A")

    def test_provider_error_before_missing_code(self) -> None:
        form = {
            "state": ["A"],
            "error": ["access_denied"],
            "error_description": ["user cancelled"],
        }
        with pytest.raises(ProviderError) as exc_info:
            parse_callback_request(form, "A")
        assert exc_info.value.error == "access_denied"
        assert exc_info.value.description == "user cancelled"

    def test_missing_code(self) -> None:
        with pytest.raises(MissingCodeError):
            parse_callback_request({"state": ["A"]}, "A")


class TestParseForm:
    def test_query(self) -> None:
        assert parse_form("state=A&code=c") == {"state": ["A"], "code": ["c"]}

    def test_body_values_come_first(self) -> None:
        form = parse_form("code=from-query", b"code=from-body")
        assert form["code"] == ["from-body", "from-query"]

    def test_invalid_percent_encoding(self) -> None:
        with pytest.raises(MalformedCallbackError, match="Failed to parse request form"):
            parse_form("state=%ff")

    def test_invalid_body_encoding(self) -> None:
        with pytest.raises(MalformedCallbackError):
            parse_form("", b"state=\xff")


class TestCheckNonce:
    def test_matching_nonce(self, id_token_factory) -> None:
        check_nonce(Token(access_token="at", id_token=id_token_factory(nonce="n1")), "n1")

    def test_mismatching_nonce(self, id_token_factory) -> None:
        token = Token(access_token="at", id_token=id_token_factory(nonce="other"))
        with pytest.raises(NonceMismatchError, match="does not match"):
            check_nonce(token, "n1")

    def test_missing_id_token(self) -> None:
        with pytest.raises(NonceMismatchError, match="no ID token"):
            check_nonce(Token(access_token="at"), "n1")


# ---------------------------------------------------------------------------
# Callback server
# ---------------------------------------------------------------------------


class TestCallbackServer:
    def test_redirect_uri(
        self, attempt: LoginAttempt, client: Client, oidc_config: OIDCConfig
    ) -> None:
        with _running_server(attempt, client, oidc_config, callback_path="/cb") as server:
            assert server.port > 0
            assert server.redirect_uri == f"http://127.0.0.1:{server.port}/cb"

    def test_valid_callback_exchanges_code(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        with _running_server(attempt, client, oidc_config) as server:
            status, body = _request(server.port, _callback_path(state=attempt.state, code="c1"))
            outcome = attempt.wait(timeout=5)

        assert status == 200
        assert body == COMPLETED_MESSAGE
        assert outcome.result().access_token == "at"
        exchange.assert_called_once_with(
            oidc_config, "c1", server.redirect_uri, http_client=None
        )

    def test_state_mismatch_does_not_exchange(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        with _running_server(attempt, client, oidc_config) as server:
            status, body = _request(server.port, _callback_path(state="B", code="c1"))
            outcome = attempt.wait(timeout=5)

        with pytest.raises(StateMismatchError):
            outcome.result()
        exchange.assert_not_called()
        # Same neutral page as on success.
        assert status == 200
        assert body == COMPLETED_MESSAGE

    def test_provider_error_passthrough(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        path = (
            f"/callback?state={attempt.state}"
            "&error=access_denied&error_description=user+cancelled"
        )
        with _running_server(attempt, client, oidc_config) as server:
            status, body = _request(server.port, path)
            outcome = attempt.wait(timeout=5)

        assert isinstance(outcome.error, ProviderError)
        assert outcome.error.error == "access_denied"
        assert outcome.error.description == "user cancelled"
        assert "access_denied" in str(outcome.error)
        assert "user cancelled" in str(outcome.error)
        assert "access_denied" not in body
        exchange.assert_not_called()

    def test_missing_state(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        with _running_server(attempt, client, oidc_config) as server:
            _request(server.port, _callback_path(code="c1"))
            outcome = attempt.wait(timeout=5)

        assert isinstance(outcome.error, MissingStateError)
        exchange.assert_not_called()

    def test_missing_code(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        with _running_server(attempt, client, oidc_config) as server:
            _request(server.port, _callback_path(state=attempt.state))
            outcome = attempt.wait(timeout=5)

        assert isinstance(outcome.error, MissingCodeError)
        exchange.assert_not_called()

    def test_malformed_query(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        with _running_server(attempt, client, oidc_config) as server:
            status, _ = _request(server.port, "/callback?state=%ff&code=c1")
            outcome = attempt.wait(timeout=5)

        assert status == 200
        assert isinstance(outcome.error, MalformedCallbackError)
        exchange.assert_not_called()

    def test_form_post(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        body = urlencode({"state": attempt.state, "code": "posted"}).encode()
        with _running_server(attempt, client, oidc_config) as server:
            status, _ = _request(
                server.port,
                "/callback",
                method="POST",
                body=body,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Content-Length": str(len(body)),
                },
            )
            outcome = attempt.wait(timeout=5)

        assert status == 200
        assert outcome.result().access_token == "at"
        assert exchange.call_args.args[1] == "posted"

    def test_other_paths_do_not_consume_attempt(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        with _running_server(attempt, client, oidc_config) as server:
            status, _ = _request(server.port, "/favicon.ico")
            assert status == 404
            assert attempt.claimed is False

            _request(server.port, _callback_path(state=attempt.state, code="c1"))
            assert attempt.wait(timeout=5).result().access_token == "at"

    def test_exchange_error_is_reported(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        exchange.side_effect = TokenExchangeError("invalid_grant")
        with _running_server(attempt, client, oidc_config) as server:
            status, body = _request(server.port, _callback_path(state=attempt.state, code="c1"))
            outcome = attempt.wait(timeout=5)

        assert status == 200
        assert body == COMPLETED_MESSAGE
        with pytest.raises(TokenExchangeError, match="invalid_grant"):
            outcome.result()

    def test_unexpected_error_is_reported(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        exchange.side_effect = RuntimeError("boom")
        with _running_server(attempt, client, oidc_config) as server:
            _request(server.port, _callback_path(state=attempt.state, code="c1"))
            outcome = attempt.wait(timeout=5)

        assert isinstance(outcome.error, RuntimeError)

    def test_request_http_client_overrides_default(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        client.http_client = MagicMock(name="default")
        override = MagicMock(name="override")
        with _running_server(attempt, client, oidc_config, http_client=override) as server:
            _request(server.port, _callback_path(state=attempt.state, code="c1"))
            attempt.wait(timeout=5)

        assert exchange.call_args.kwargs["http_client"] is override

    def test_default_http_client_used_without_override(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        default = MagicMock(name="default")
        client.http_client = default
        with _running_server(attempt, client, oidc_config) as server:
            _request(server.port, _callback_path(state=attempt.state, code="c1"))
            attempt.wait(timeout=5)

        assert exchange.call_args.kwargs["http_client"] is default

    def test_nonce_checked_after_exchange(
        self,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
        id_token_factory,
    ) -> None:
        attempt = LoginAttempt(nonce_check=True)
        exchange.return_value = Token(access_token="at", id_token=id_token_factory(nonce="wrong"))
        with _running_server(attempt, client, oidc_config) as server:
            _request(server.port, _callback_path(state=attempt.state, code="c1"))
            outcome = attempt.wait(timeout=5)

        assert isinstance(outcome.error, NonceMismatchError)

    def test_single_outcome_for_concurrent_callbacks(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        exchange_started = threading.Event()
        release = threading.Event()

        def slow_exchange(*args: Any, **kwargs: Any) -> Token:
            exchange_started.set()
            release.wait(5)
            return Token(access_token="at")

        exchange.side_effect = slow_exchange
        path = _callback_path(state=attempt.state, code="c1")
        results: list[tuple[int, str]] = []

        with _running_server(attempt, client, oidc_config) as server:
            first = threading.Thread(target=lambda: results.append(_request(server.port, path)))
            first.start()
            assert exchange_started.wait(5)

            # The second request arrives while the first is still exchanging.
            second_status, second_body = _request(server.port, path)
            release.set()
            first.join(5)

            outcome = attempt.wait(timeout=5)
            with pytest.raises(LoginTimeoutError):
                attempt.wait(timeout=0.2)

        assert exchange.call_count == 1
        assert outcome.result().access_token == "at"
        assert second_status == 200
        assert second_body == COMPLETED_MESSAGE
        assert results == [(200, COMPLETED_MESSAGE)]

    def test_custom_responses(
        self,
        attempt: LoginAttempt,
        client: Client,
        oidc_config: OIDCConfig,
        exchange: MagicMock,
    ) -> None:
        seen: list[Exception] = []

        def on_success(handler: BaseHTTPRequestHandler) -> None:
            handler.send_response(200)
            handler.end_headers()
            handler.wfile.write(b"custom ok")

        def on_failure(handler: BaseHTTPRequestHandler, error: Exception) -> None:
            seen.append(error)
            handler.send_response(400)
            handler.end_headers()
            handler.wfile.write(b"custom fail")

        responses = CallbackResponses(success=on_success, failure=on_failure)
        with _running_server(attempt, client, oidc_config, responses=responses) as server:
            ok = _request(server.port, _callback_path(state=attempt.state, code="c1"))
            late = _request(server.port, _callback_path(state=attempt.state, code="c2"))

        assert ok == (200, "custom ok")
        assert late == (400, "custom fail")
        assert len(seen) == 1
        assert isinstance(seen[0], AttemptConcludedError)
