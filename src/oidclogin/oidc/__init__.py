"""OpenID Connect provider boundary: token exchange client and verifiers.

Exports:
    :class:`Client` -- discovery, authorization URL, code exchange and
    refresh against one provider.
    :class:`Verifier` -- interface consulted before reusing a token.
    :class:`ClaimsVerifier` -- default expiry/claims verifier.
"""

from oidclogin.oidc.client import Client, resolve_http_client
from oidclogin.oidc.verifier import ClaimsVerifier, Verifier, decode_claims

__all__ = ["ClaimsVerifier", "Client", "Verifier", "decode_claims", "resolve_http_client"]
