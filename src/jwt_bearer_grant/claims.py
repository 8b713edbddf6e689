"""Assertion claims and the RFC 7523 §3 claim rules.

AssertionClaims is the typed view of a verified payload. ClaimValidator
applies the acceptance rules in a fixed priority order and raises the first
violation:

    aud missing -> aud lacks token URL -> exp missing -> exp not in future
    -> nbf not in past -> iat missing (when required) -> exp - iat too long
    -> jti missing (when required) -> jti already used

Every rule except the last is stateless, so a bad assertion never costs a
replay-store round trip.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from .context import check
from .errors import InvalidGrant, JTIKnown

if TYPE_CHECKING:
    from .config import JWTBearerGrantConfig
    from .context import RequestContext
    from .replay import ReplayGuard

logger = logging.getLogger(__name__)


def _numeric_date(claims: Mapping[str, Any], name: str) -> datetime | None:
    value = claims.get(name)
    if value is None:
        return None
    # bool is an int subclass but never a NumericDate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f'"{name}" claim must be a NumericDate')
    try:
        return datetime.fromtimestamp(value, tz=UTC)
    except (OverflowError, OSError) as e:
        raise ValueError(f'"{name}" claim is out of range') from e


def _string(claims: Mapping[str, Any], name: str) -> str:
    value = claims.get(name, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f'"{name}" claim must be a string')
    return value


def _audience(claims: Mapping[str, Any]) -> tuple[str, ...]:
    value = claims.get("aud")
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(a, str) for a in value):
        return tuple(value)
    raise ValueError('"aud" claim must be a string or an array of strings')


def _rfc3339(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True, slots=True)
class AssertionClaims:
    """Registered claims of a verified assertion.

    Attributes:
        issuer: ``iss``; empty string when absent.
        subject: ``sub``; empty string when absent.
        audience: ``aud`` normalised to a tuple.
        expires_at: ``exp`` as an aware UTC datetime.
        not_before: ``nbf`` as an aware UTC datetime.
        issued_at: ``iat`` as an aware UTC datetime.
        jwt_id: ``jti``; empty string when absent.
        raw: The full decoded payload.
    """

    issuer: str = ""
    subject: str = ""
    audience: tuple[str, ...] = ()
    expires_at: datetime | None = None
    not_before: datetime | None = None
    issued_at: datetime | None = None
    jwt_id: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_mapping(cls, claims: Mapping[str, Any]) -> AssertionClaims:
        """Build AssertionClaims from a decoded payload.

        Raises:
            ValueError: A registered claim has the wrong JSON type.
        """
        return cls(
            issuer=_string(claims, "iss"),
            subject=_string(claims, "sub"),
            audience=_audience(claims),
            expires_at=_numeric_date(claims, "exp"),
            not_before=_numeric_date(claims, "nbf"),
            issued_at=_numeric_date(claims, "iat"),
            jwt_id=_string(claims, "jti"),
            raw=dict(claims),
        )


class ClaimValidator:
    """Applies the JWT-bearer claim rules to verified claims.

    The validator holds only immutable configuration and a reference to the
    replay guard; it is safe to share across threads.
    """

    def __init__(self, config: JWTBearerGrantConfig, replay_guard: ReplayGuard) -> None:
        self._config = config
        self._replay = replay_guard

    def validate(
        self, ctx: RequestContext | None, claims: AssertionClaims, now: datetime
    ) -> None:
        """Raise the first violated rule, or return None.

        Args:
            ctx: Request context, checked before the replay lookup.
            claims: Claims from a signature-verified assertion.
            now: Current time (aware UTC). Read once per validation.

        Raises:
            InvalidGrant: A stateless rule was violated.
            JTIKnown: The ``jti`` was already used.
            ServerError: The replay store failed.
        """
        cfg = self._config

        if not claims.audience:
            raise InvalidGrant(
                'The JWT in "assertion" request parameter MUST contain an "aud" (audience) claim.'
            )

        if cfg.token_url not in claims.audience:
            raise InvalidGrant(
                'The JWT in "assertion" request parameter MUST contain an "aud" (audience) '
                f'claim containing a value "{cfg.token_url}" that identifies the authorization '
                "server as an intended audience."
            )

        if claims.expires_at is None:
            raise InvalidGrant(
                'The JWT in "assertion" request parameter MUST contain an "exp" '
                "(expiration time) claim."
            )

        if claims.expires_at <= now:
            raise InvalidGrant('The JWT in "assertion" request parameter expired.')

        if claims.not_before is not None and claims.not_before >= now:
            raise InvalidGrant(
                'The JWT in "assertion" request parameter contains an "nbf" (not before) '
                f"claim, that identifies the time '{_rfc3339(claims.not_before)}' before "
                "which the token MUST NOT be accepted."
            )

        if not cfg.jwt_issued_date_optional and claims.issued_at is None:
            raise InvalidGrant(
                'The JWT in "assertion" request parameter MUST contain an "iat" (issued at) claim.'
            )

        issued_at = claims.issued_at if claims.issued_at is not None else now
        if claims.expires_at - issued_at > cfg.jwt_max_duration:
            raise InvalidGrant(
                'The JWT in "assertion" request parameter contains an "exp" (expiration time) '
                f'claim with value "{_rfc3339(claims.expires_at)}" that is unreasonably far in '
                f'the future, considering token issued at "{_rfc3339(issued_at)}".'
            )

        if not cfg.jwt_id_optional and not claims.jwt_id:
            raise InvalidGrant(
                'The JWT in "assertion" request parameter MUST contain an "jti" (JWT ID) claim.'
            )

        if claims.jwt_id:
            check(ctx)
            if self._replay.is_used(ctx, claims.jwt_id):
                logger.info(
                    "jwt-bearer assertion replayed: iss=%s sub=%s jti=%s",
                    claims.issuer,
                    claims.subject,
                    claims.jwt_id,
                )
                raise JTIKnown()
