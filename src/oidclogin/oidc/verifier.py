"""Token verification capability.

:class:`Verifier` is the interface token sources consult before reusing a
cached credential. Implementations raise
:class:`~oidclogin.exceptions.VerificationError` with the reason a token
cannot be trusted; returning normally means the token is usable.

:class:`ClaimsVerifier` is the default. It checks freshness and the ID
token's ``exp``, ``aud`` and ``iss`` claims with PyJWT. It does **not**
check the JWT signature: plug in a JWKS-backed verifier where signatures
matter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import jwt

from oidclogin.exceptions import VerificationError
from oidclogin.models import Token


def decode_claims(id_token: str) -> dict[str, Any]:
    """Decode the payload of a JWT without verifying its signature.

    Args:
        id_token: A compact-serialised JWT (``header.payload.signature``).

    Returns:
        The claims dictionary.

    Raises:
        VerificationError: If the token is not a decodable JWT.
    """
    try:
        return jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise VerificationError(f"Malformed ID token: {exc}") from exc


class Verifier(ABC):
    """Decides whether a token may still be used."""

    @abstractmethod
    def verify(self, token: Token) -> None:
        """Check *token*.

        Raises:
            VerificationError: With the reason the token is not valid.
        """
        ...


class ClaimsVerifier(Verifier):
    """Check token expiry and ID token claims for one client.

    Args:
        client_id: Expected ``aud`` of the ID token.
        issuer: Expected ``iss`` of the ID token, compared exactly. Not
            checked when ``None``.
        leeway: Clock skew tolerated on ``exp``, in seconds.
    """

    def __init__(
        self,
        client_id: str,
        issuer: Optional[str] = None,
        leeway: float = 10.0,
    ) -> None:
        self.client_id = client_id
        self.issuer = issuer
        self.leeway = leeway

    def verify(self, token: Token) -> None:
        if not token.access_token:
            raise VerificationError("Token has no access token")
        if token.expired:
            raise VerificationError(f"Token expired at {token.expiry}")
        if token.id_token:
            self._verify_claims(token.id_token)

    def _verify_claims(self, id_token: str) -> None:
        # Signature checks are off, so every claim check is switched on explicitly.
        options = {
            "verify_signature": False,
            "verify_exp": True,
            "verify_aud": True,
            "verify_iss": self.issuer is not None,
            "require": ["exp"],
        }
        try:
            jwt.decode(
                id_token,
                options=options,
                audience=self.client_id,
                issuer=self.issuer,
                leeway=self.leeway,
            )
        except jwt.ExpiredSignatureError as exc:
            raise VerificationError("ID token expired") from exc
        except jwt.MissingRequiredClaimError as exc:
            raise VerificationError(f"ID token has no '{exc.claim}' claim") from exc
        except jwt.InvalidAudienceError as exc:
            raise VerificationError(
                f"ID token audience does not contain client id '{self.client_id}': {exc}"
            ) from exc
        except jwt.InvalidIssuerError as exc:
            raise VerificationError(
                f"ID token issued by an unexpected issuer, expected '{self.issuer}': {exc}"
            ) from exc
        except jwt.PyJWTError as exc:
            raise VerificationError(f"Invalid ID token: {exc}") from exc
