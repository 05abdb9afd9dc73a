"""Exception hierarchy for oidclogin.

All exceptions inherit from :class:`OIDCLoginError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`oidclogin.exit_codes`.
The top-level error handler in :func:`oidclogin.app.main` catches
``OIDCLoginError`` and exits with the appropriate code.

Subclass hierarchy::

    OIDCLoginError (exit 1)
    +-- ConfigError                 (exit 2)
    +-- AuthError                   (exit 3)
        +-- LoginError
        |   +-- ListenerError           (exit 6)
        |   +-- BrowserLaunchError
        |   +-- LoginTimeoutError       (exit 8)
        |   +-- LoginCancelledError     (exit 130)
        |   +-- CallbackError
        |   |   +-- MalformedCallbackError
        |   |   +-- MissingStateError
        |   |   +-- StateMismatchError
        |   |   +-- MissingCodeError
        |   |   +-- NonceMismatchError
        |   |   +-- AttemptConcludedError
        |   +-- ProviderError
        +-- DiscoveryError
        +-- TokenExchangeError
        +-- TokenRefreshError
        +-- VerificationError

Callback errors describe a redirect that must not be trusted (a forged,
stale, or replayed request). They are never retried automatically; a new
login attempt with a new ``state`` is required.
"""

from oidclogin.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_TIMEOUT,
)


class OIDCLoginError(Exception):
    """Base exception for all oidclogin errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(OIDCLoginError):
    """Raised for configuration problems (unreadable YAML, bad credential sources)."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(OIDCLoginError):
    """Raised when authentication fails."""

    exit_code = EXIT_AUTH_FAILURE


class LoginError(AuthError):
    """Raised by the interactive login flow."""


class ListenerError(LoginError):
    """Raised when the local callback listener cannot be started."""

    exit_code = EXIT_CONNECTION_ERROR


class BrowserLaunchError(LoginError):
    """Raised when the system URL opener cannot be started."""


class LoginTimeoutError(LoginError):
    """Raised when no callback arrived before the login deadline."""

    exit_code = EXIT_TIMEOUT


class LoginCancelledError(LoginError):
    """Raised when the caller cancelled the login while it was waiting."""

    exit_code = EXIT_CANCELLED


class CallbackError(LoginError):
    """Raised when the provider redirect fails protocol or session checks."""


class MalformedCallbackError(CallbackError):
    """Raised when the callback query string or form body cannot be decoded."""


class MissingStateError(CallbackError):
    """Raised when the callback carries no ``state`` parameter."""


class StateMismatchError(CallbackError):
    """Raised when the callback ``state`` differs from the one this attempt sent."""


class MissingCodeError(CallbackError):
    """Raised when the callback carries no authorization ``code``."""


class NonceMismatchError(CallbackError):
    """Raised when the exchanged ID token does not echo the attempt's nonce."""


class AttemptConcludedError(CallbackError):
    """Raised for callback requests arriving after the attempt already has an outcome."""


class ProviderError(LoginError):
    """Raised when the provider redirected back with ``error`` parameters.

    Both values are passed through verbatim.

    Args:
        error: The provider's ``error`` code (e.g. ``access_denied``).
        description: The provider's ``error_description``, possibly empty.
    """

    def __init__(self, error: str, description: str = ""):
        super().__init__(f"Got error from provider: {error} Desc: {description}")
        self.error = error
        self.description = description


class DiscoveryError(AuthError):
    """Raised when the provider's discovery document cannot be fetched or is invalid."""


class TokenExchangeError(AuthError):
    """Raised when the token endpoint rejects a request or cannot be reached."""


class TokenRefreshError(AuthError):
    """Raised when a credential cannot be refreshed."""


class VerificationError(AuthError):
    """Raised by a :class:`~oidclogin.oidc.verifier.Verifier` for an untrustworthy token."""
