"""Storage implementations for trusted keys and JWT ID replay records.

This module provides implementations of the KeyStorage and JTIStorage
protocols.

Implementations:
- InMemoryKeyStore / InMemoryJTIStore: in-process dicts guarded by a lock
  (good for dev/single-instance)
- RedisKeyStore / RedisJTIStore: Redis-backed (good for multi-instance
  production)

Replay Atomicity:
    Both JTI stores mark IDs with a check-and-set that cannot interleave
    with another mark of the same ID: the in-memory store under its lock,
    the Redis store with ``SET key value NX EX ttl``. A refused mark raises
    JTIKnown, so two concurrent requests carrying the same assertion cannot
    both be accepted.
"""

from __future__ import annotations

import json
import math
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from jwt import PyJWK

from .errors import JTIKnown, KeyNotFoundError

if TYPE_CHECKING:
    from .context import RequestContext
    from .protocols import Clock


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _require_kid(key: PyJWK) -> str:
    kid = key.key_id
    if not kid:
        raise ValueError("PyJWK must have key_id populated to be registered")
    return kid


@dataclass(frozen=True, slots=True)
class _KeyRecord:
    """A registered key and the scopes its holder may request."""

    key: PyJWK
    scopes: tuple[str, ...]


class InMemoryKeyStore:
    """In-process registry of trusted assertion-signing keys.

    Keys are returned from ``get_public_keys`` in registration order.

    Example:
        ```python
        store = InMemoryKeyStore()
        store.add_key("https://issuer.example", "alice", jwk, scopes=["read"])
        ```
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: dict[tuple[str, str], dict[str, _KeyRecord]] = {}

    def add_key(
        self, issuer: str, subject: str, key: PyJWK, scopes: Sequence[str] = ()
    ) -> None:
        """Register ``key`` under (issuer, subject, key.key_id).

        Raises:
            ValueError: ``key`` has no key_id.
        """
        kid = _require_kid(key)
        with self._lock:
            self._keys.setdefault((issuer, subject), {})[kid] = _KeyRecord(key, tuple(scopes))

    def remove_key(self, issuer: str, subject: str, key_id: str) -> None:
        with self._lock:
            self._keys.get((issuer, subject), {}).pop(key_id, None)

    def _record(self, issuer: str, subject: str, key_id: str) -> _KeyRecord:
        with self._lock:
            record = self._keys.get((issuer, subject), {}).get(key_id)
        if record is None:
            raise KeyNotFoundError(
                f"no key registered for issuer={issuer!r} subject={subject!r} kid={key_id!r}"
            )
        return record

    def get_public_key(
        self, ctx: RequestContext | None, issuer: str, subject: str, key_id: str
    ) -> PyJWK:
        return self._record(issuer, subject, key_id).key

    def get_public_keys(
        self, ctx: RequestContext | None, issuer: str, subject: str
    ) -> list[PyJWK]:
        with self._lock:
            return [r.key for r in self._keys.get((issuer, subject), {}).values()]

    def get_public_key_scopes(
        self, ctx: RequestContext | None, issuer: str, subject: str, key_id: str
    ) -> list[str]:
        return list(self._record(issuer, subject, key_id).scopes)


class InMemoryJTIStore:
    """In-process JWT ID replay records with lazy expiry.

    Expired records are dropped when looked up, and swept in bulk only once
    the map holds ``purge_threshold`` entries.

    Attributes:
        _used: Mapping of JWT ID -> time after which it may be forgotten.
    """

    def __init__(self, now: Clock = _utc_now, purge_threshold: int = 1024) -> None:
        self._now = now
        self._purge_threshold = purge_threshold
        self._lock = threading.Lock()
        self._used: dict[str, datetime] = {}

    def _purge_expired(self, now: datetime) -> None:
        for jti in [j for j, exp in self._used.items() if exp <= now]:
            del self._used[jti]

    def is_jwt_used(self, ctx: RequestContext | None, jti: str) -> bool:
        now = self._now()
        with self._lock:
            exp = self._used.get(jti)
            if exp is None:
                return False
            if exp <= now:
                # Lazy removal of expired entry
                del self._used[jti]
                return False
            return True

    def mark_jwt_used_for_time(
        self, ctx: RequestContext | None, jti: str, expires_at: datetime
    ) -> None:
        now = self._now()
        with self._lock:
            if len(self._used) >= self._purge_threshold:
                self._purge_expired(now)
            exp = self._used.get(jti)
            if exp is not None and exp > now:
                raise JTIKnown()
            self._used[jti] = expires_at


class RedisKeyStore:
    """Redis-backed registry of trusted assertion-signing keys.

    Storage Format:
        One hash per (issuer, subject), named
        ``{prefix}["<issuer>", "<subject>"]``. Each field is a key-id whose
        value is ``{"jwk": <JWK dict>, "scopes": [...]}`` as JSON.

    ``get_public_keys`` returns keys sorted by key-id, since Redis hash
    iteration order is unspecified.

    Attributes:
        _client: Redis client instance (from redis package).
    """

    def __init__(self, redis_client: Any, prefix: str = "jwt_bearer:keys:") -> None:
        """Initialize the Redis key store.

        Args:
            redis_client: Redis client instance. Must support hget(),
                hgetall(), hset() and hdel().
            prefix: Namespace for hash names.
        """
        self._client = redis_client
        self._prefix = prefix

    def _name(self, issuer: str, subject: str) -> str:
        return self._prefix + json.dumps([issuer, subject])

    @staticmethod
    def _decode(data: bytes | str) -> _KeyRecord:
        try:
            obj = json.loads(data)
            return _KeyRecord(
                key=PyJWK.from_dict(obj["jwk"]),
                scopes=tuple(obj.get("scopes", ())),
            )
        except (json.JSONDecodeError, ValueError, KeyError, TypeError) as e:
            raise RuntimeError("Failed to deserialize stored key") from e

    def add_key(
        self, issuer: str, subject: str, key: PyJWK, scopes: Sequence[str] = ()
    ) -> None:
        """Register ``key`` under (issuer, subject, key.key_id).

        Raises:
            ValueError: ``key`` has no key_id.
            RuntimeError: If the Redis operation fails.
        """
        kid = _require_kid(key)
        value = json.dumps(
            {
                "jwk": key._jwk_data,  # pyright: ignore[reportPrivateUsage]
                "scopes": list(scopes),
            }
        )
        try:
            self._client.hset(self._name(issuer, subject), kid, value)
        except Exception as e:
            raise RuntimeError("Failed to store key in Redis") from e

    def remove_key(self, issuer: str, subject: str, key_id: str) -> None:
        self._client.hdel(self._name(issuer, subject), key_id)

    def _record(self, issuer: str, subject: str, key_id: str) -> _KeyRecord:
        data = self._client.hget(self._name(issuer, subject), key_id)
        if data is None:
            raise KeyNotFoundError(
                f"no key registered for issuer={issuer!r} subject={subject!r} kid={key_id!r}"
            )
        return self._decode(data)

    def get_public_key(
        self, ctx: RequestContext | None, issuer: str, subject: str, key_id: str
    ) -> PyJWK:
        return self._record(issuer, subject, key_id).key

    def get_public_keys(
        self, ctx: RequestContext | None, issuer: str, subject: str
    ) -> list[PyJWK]:
        entries = self._client.hgetall(self._name(issuer, subject)) or {}
        by_kid = {
            (k.decode("utf-8") if isinstance(k, bytes) else k): v for k, v in entries.items()
        }
        return [self._decode(by_kid[kid]).key for kid in sorted(by_kid)]

    def get_public_key_scopes(
        self, ctx: RequestContext | None, issuer: str, subject: str, key_id: str
    ) -> list[str]:
        return list(self._record(issuer, subject, key_id).scopes)


class RedisJTIStore:
    """Redis-backed JWT ID replay records.

    Each used ID is a plain key ``{prefix}{jti}`` whose TTL runs until the
    assertion's expiry, so Redis forgets it on its own.

    Attributes:
        _client: Redis client instance (from redis package).
    """

    def __init__(
        self, redis_client: Any, prefix: str = "jwt_bearer:jti:", now: Clock = _utc_now
    ) -> None:
        """Initialize the Redis replay store.

        Args:
            redis_client: Redis client instance. Must support exists() and
                set(name, value, nx=..., ex=...).
            prefix: Namespace for replay keys.
            now: Clock used to turn the expiry into a TTL.
        """
        self._client = redis_client
        self._prefix = prefix
        self._now = now

    def is_jwt_used(self, ctx: RequestContext | None, jti: str) -> bool:
        try:
            return bool(self._client.exists(self._prefix + jti))
        except Exception as e:
            raise RuntimeError("Failed to read replay record from Redis") from e

    def mark_jwt_used_for_time(
        self, ctx: RequestContext | None, jti: str, expires_at: datetime
    ) -> None:
        ttl = max(1, math.ceil((expires_at - self._now()).total_seconds()))
        try:
            stored = self._client.set(
                self._prefix + jti,
                expires_at.isoformat(),
                nx=True,
                ex=ttl,
            )
        except Exception as e:
            raise RuntimeError("Failed to write replay record to Redis") from e
        if not stored:
            raise JTIKnown()
