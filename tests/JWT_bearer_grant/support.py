"""Shared constants and helpers for the grant tests."""

from datetime import UTC, datetime, timedelta
from typing import Any

from jwt import PyJWK

TOKEN_URL = "https://as.example/token"
ISSUER = "https://issuer.example"
SUBJECT = "alice"
NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock returning a settable instant."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class SigningKey:
    """A private key plus its public PyJWK as it would be registered."""

    def __init__(self, private_key: Any, public_jwk: PyJWK, algorithm: str):
        self.private_key = private_key
        self.public_jwk = public_jwk
        self.algorithm = algorithm

    @property
    def kid(self) -> str:
        return self.public_jwk.key_id or ""


def default_claims(now: datetime = NOW, **overrides: Any) -> dict[str, Any]:
    """Valid assertion claims; an override of None drops the claim."""
    claims: dict[str, Any] = {
        "iss": ISSUER,
        "sub": SUBJECT,
        "aud": [TOKEN_URL],
        "exp": int((now + timedelta(minutes=5)).timestamp()),
        "iat": int(now.timestamp()),
        "jti": "abc123",
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}
