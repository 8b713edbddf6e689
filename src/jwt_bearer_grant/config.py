"""Static configuration for the JWT-bearer grant handler."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Final

GRANT_TYPE_JWT_BEARER: Final[str] = "urn:ietf:params:oauth:grant-type:jwt-bearer"
"""RFC 7523 grant type identifier."""

ACCESS_TOKEN: Final[str] = "access_token"
"""Token type key used for session expiry and lifespan lookups."""

DEFAULT_ALGORITHMS: Final[tuple[str, ...]] = (
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
    "EdDSA",
)
"""Asymmetric algorithms accepted for assertions."""

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True, slots=True)
class JWTBearerGrantConfig:
    """Configuration for the JWT-bearer grant.

    Set once per handler instance and never mutated.

    Attributes:
        token_url: URL of the authorization server's token endpoint. Every
            assertion's ``aud`` claim must contain this value.

        skip_client_auth: If True, the client is not required to be
            registered for the JWT-bearer grant type.

        jwt_id_optional: If True, assertions without a ``jti`` claim are
            accepted (and are then not replay protected).

        jwt_issued_date_optional: If True, assertions without an ``iat``
            claim are accepted; the current time stands in for it when
            checking ``jwt_max_duration``.

        jwt_max_duration: Maximum allowed ``exp - iat``.

        access_token_lifespan: Default access token lifespan, used unless
            the client overrides it.

        algorithms: Explicit allowlist of assertion signing algorithms. Keep
            it asymmetric; registered keys are public keys.

        match_requested_audience: If True, audiences requested on the token
            request must be matched by the audience strategy against the
            audiences claimed in the assertion. Off by default: claimed
            audiences are granted unconditionally.
    """

    token_url: str
    skip_client_auth: bool = False
    jwt_id_optional: bool = False
    jwt_issued_date_optional: bool = False
    jwt_max_duration: timedelta = timedelta(hours=24)
    access_token_lifespan: timedelta = timedelta(hours=1)
    algorithms: tuple[str, ...] = field(default=DEFAULT_ALGORITHMS)
    match_requested_audience: bool = False

    def __post_init__(self) -> None:
        if not self.token_url or not self.token_url.strip():
            raise ValueError("token_url cannot be empty")
        if self.jwt_max_duration <= timedelta(0):
            raise ValueError(f"jwt_max_duration must be positive, got {self.jwt_max_duration}")
        if self.access_token_lifespan <= timedelta(0):
            raise ValueError(
                f"access_token_lifespan must be positive, got {self.access_token_lifespan}"
            )
        if not self.algorithms:
            raise ValueError("algorithms cannot be empty")
        if any(alg.lower() == "none" or alg.startswith("HS") for alg in self.algorithms):
            raise ValueError("algorithms must only contain asymmetric signing algorithms")

    @classmethod
    def from_env(
        cls, prefix: str = "JWT_BEARER_", environ: Mapping[str, str] | None = None
    ) -> JWTBearerGrantConfig:
        """Build a configuration from environment variables.

        Reads ``{prefix}TOKEN_URL`` (required), ``SKIP_CLIENT_AUTH``,
        ``JWT_ID_OPTIONAL``, ``JWT_ISSUED_DATE_OPTIONAL``,
        ``MATCH_REQUESTED_AUDIENCE``, ``JWT_MAX_DURATION`` and
        ``ACCESS_TOKEN_LIFESPAN`` (both in seconds) and ``ALGORITHMS``
        (comma separated).

        Raises:
            ValueError: TOKEN_URL is missing or a value cannot be parsed.
        """
        env = os.environ if environ is None else environ

        def flag(name: str) -> bool:
            return env.get(prefix + name, "").strip().lower() in _TRUTHY

        def seconds(name: str, default: timedelta) -> timedelta:
            raw = env.get(prefix + name, "").strip()
            if not raw:
                return default
            return timedelta(seconds=int(raw))

        token_url = env.get(prefix + "TOKEN_URL", "").strip()
        if not token_url:
            raise ValueError(f"{prefix}TOKEN_URL must be set")

        raw_algs = env.get(prefix + "ALGORITHMS", "").strip()
        algorithms = (
            tuple(a.strip() for a in raw_algs.split(",") if a.strip())
            if raw_algs
            else DEFAULT_ALGORITHMS
        )

        return cls(
            token_url=token_url,
            skip_client_auth=flag("SKIP_CLIENT_AUTH"),
            jwt_id_optional=flag("JWT_ID_OPTIONAL"),
            jwt_issued_date_optional=flag("JWT_ISSUED_DATE_OPTIONAL"),
            jwt_max_duration=seconds("JWT_MAX_DURATION", timedelta(hours=24)),
            access_token_lifespan=seconds("ACCESS_TOKEN_LIFESPAN", timedelta(hours=1)),
            algorithms=algorithms,
            match_requested_audience=flag("MATCH_REQUESTED_AUDIENCE"),
        )
