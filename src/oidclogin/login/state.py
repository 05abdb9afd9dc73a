"""Random identifiers for login attempts."""

from __future__ import annotations

import base64
import secrets


def rand128_bits() -> str:
    """Return a 128-bit random ID, base64url-encoded without padding.

    Used for the ``state`` and ``nonce`` of every login attempt.
    """
    raw = secrets.token_bytes(16)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")
