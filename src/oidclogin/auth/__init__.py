"""Token sources with caching and refresh.

The main entry points are:

- :class:`TokenSource` -- abstract base class for anything producing tokens.
- :class:`ReuseTokenSource` -- thread-safe cache that refreshes on demand.
- :class:`TokenRefresher` -- ``grant_type=refresh_token`` source.
- :class:`StaticTokenSource` -- fixed, non-expiring token.

Typical usage::

    from oidclogin.auth import ReuseTokenSource, TokenRefresher

    source = ReuseTokenSource(
        TokenRefresher(client, oidc_config, token.refresh_token),
        token=token,
    )
    headers = source.token().authorization_header()
"""

from oidclogin.auth.base import TokenSource
from oidclogin.auth.sources import ReuseTokenSource, StaticTokenSource, TokenRefresher

__all__ = [
    "ReuseTokenSource",
    "StaticTokenSource",
    "TokenRefresher",
    "TokenSource",
]
