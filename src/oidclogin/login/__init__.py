"""Interactive browser login.

Exports:
    :class:`LoginFlow` -- the login orchestrator.
    :func:`login` -- one-shot convenience wrapper around :class:`LoginFlow`.
    :class:`CallbackResponses` -- override the page shown in the browser.
    :func:`open_browser` -- OS default URL opener.
    :func:`rand128_bits` -- 128-bit random ``state``/``nonce`` generator.

See Also:
    :mod:`oidclogin.login.callback` for the redirect handler.
"""

from oidclogin.login.browser import open_browser
from oidclogin.login.callback import (
    CallbackOutcome,
    CallbackResponses,
    CallbackServer,
    LoginAttempt,
)
from oidclogin.login.flow import LoginFlow, login
from oidclogin.login.state import rand128_bits

__all__ = [
    "CallbackOutcome",
    "CallbackResponses",
    "CallbackServer",
    "LoginAttempt",
    "LoginFlow",
    "login",
    "open_browser",
    "rand128_bits",
]
