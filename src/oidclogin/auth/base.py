"""Abstract base class for token sources.

A :class:`TokenSource` hands out :class:`~oidclogin.models.Token`
instances on demand. Concrete sources live in
:mod:`oidclogin.auth.sources`:

- :class:`~oidclogin.auth.sources.StaticTokenSource` -- a fixed token.
- :class:`~oidclogin.auth.sources.TokenRefresher` -- a fresh token per call
  using ``grant_type=refresh_token``.
- :class:`~oidclogin.auth.sources.ReuseTokenSource` -- caches the token of
  another source and refreshes it when it stops being valid.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from oidclogin.models import Token
from oidclogin.oidc.verifier import Verifier


class TokenSource(ABC):
    """Anything that can return a token and the verifier to check it with."""

    @abstractmethod
    def token(self) -> Token:
        """Return a token.

        Must be safe for concurrent use by multiple threads unless the
        implementation documents otherwise. The returned token must not be
        modified.

        Raises:
            AuthError: If no token can be produced.
        """
        ...

    @abstractmethod
    def verifier(self) -> Optional[Verifier]:
        """Return the verifier for this source's tokens, or ``None``."""
        ...
