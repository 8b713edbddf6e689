"""Signed assertion parsing and verification using PyJWT.

This module wraps PyJWT so the grant handler can treat the assertion as an
opaque signed token that is read twice:

1. ``unverified_claims()``: cheap, no crypto. Only used to find out which
   issuer/subject/key-id to look up. Never trusted for anything else.
2. ``verify(key)``: full signature verification against a registered
   public key. ``typed_claims()`` then converts the payload to
   AssertionClaims.

PyJWT's own time and audience checks are switched off during verification.
ClaimValidator applies those rules itself, in a fixed order, against an
injectable clock.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Final

import jwt

from .claims import AssertionClaims
from .errors import InvalidGrant
from .protocols import Claims

if TYPE_CHECKING:
    from jwt import PyJWK

_DECODE_OPTIONS: Final[dict[str, bool]] = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


class SignedAssertion:
    """A compact-serialized JWS whose signature has not been checked yet.

    Attributes:
        raw: The assertion exactly as received.
        header: Decoded (unverified) JOSE header.
    """

    def __init__(self, raw: str, header: dict[str, Any]) -> None:
        self.raw = raw
        self.header = header

    @classmethod
    def parse(cls, raw: str) -> SignedAssertion:
        """Parse the JOSE header of ``raw``.

        Raises:
            InvalidGrant: ``raw`` is not a compact-serialized JWS.
        """
        try:
            header = jwt.get_unverified_header(raw)
        except jwt.PyJWTError as e:
            raise InvalidGrant(
                'Unable to parse JSON Web Token passed in "assertion" request parameter.',
                debug=str(e),
            ) from e
        return cls(raw, header)

    @property
    def key_id(self) -> str:
        """The ``kid`` header value, or an empty string when absent."""
        kid = self.header.get("kid")
        if isinstance(kid, str) and kid:
            return kid
        return ""

    def unverified_claims(self) -> Claims:
        """Decode the payload without checking the signature.

        Raises:
            InvalidGrant: The payload is not a JSON object.
        """
        try:
            return jwt.decode(self.raw, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise InvalidGrant(
                'Looks like there are no claims in JWT in "assertion" request parameter.',
                debug=str(e),
            ) from e

    def verify(self, key: PyJWK, algorithms: Sequence[str]) -> Claims:
        """Verify the signature with ``key`` and return the raw payload.

        Args:
            key: Registered public key.
            algorithms: Explicit allowlist of signing algorithms.

        Raises:
            InvalidGrant: Signature does not verify or the algorithm is not
                allowed.
        """
        try:
            return jwt.decode(
                self.raw,
                key.key,
                algorithms=list(algorithms),
                options=_DECODE_OPTIONS,
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise _integrity_error(str(e)) from e

    @staticmethod
    def typed_claims(payload: Claims) -> AssertionClaims:
        """Convert a verified payload to AssertionClaims.

        Raises:
            InvalidGrant: A registered claim has the wrong type.
        """
        try:
            return AssertionClaims.from_mapping(payload)
        except ValueError as e:
            raise _integrity_error(str(e)) from e


def _integrity_error(debug: str) -> InvalidGrant:
    return InvalidGrant("Unable to verify the integrity of the 'assertion' value.", debug=debug)
