import json
import time
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from flask import Flask
from jwt import PyJWK
from jwt.algorithms import ECAlgorithm, RSAAlgorithm

import jwt_bearer_grant as m
from support import TOKEN_URL, FrozenClock, SigningKey, default_claims


@pytest.fixture(scope="session")
def _rsa_private_keys():
    return [rsa.generate_private_key(public_exponent=65537, key_size=2048) for _ in range(2)]


@pytest.fixture(scope="session")
def _ec_private_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def make_rsa_key(_rsa_private_keys) -> Callable[..., SigningKey]:
    """
    Factory fixture that returns a function.

    Usage in tests:
        key = make_rsa_key(kid="kid1")
        other = make_rsa_key(kid="kid2", index=1)
    """

    def _make(*, kid: str = "kid1", index: int = 0) -> SigningKey:
        private_key = _rsa_private_keys[index]
        jwk_dict = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
        jwk_dict.update({"kid": kid, "alg": "RS256", "use": "sig"})
        return SigningKey(private_key, PyJWK.from_dict(jwk_dict), "RS256")

    return _make


@pytest.fixture
def make_ec_key(_ec_private_key) -> Callable[..., SigningKey]:
    def _make(*, kid: str = "ec1") -> SigningKey:
        jwk_dict = json.loads(ECAlgorithm.to_jwk(_ec_private_key.public_key()))
        jwk_dict.update({"kid": kid, "alg": "ES256", "use": "sig"})
        return SigningKey(_ec_private_key, PyJWK.from_dict(jwk_dict), "ES256")

    return _make



@pytest.fixture
def make_assertion() -> Callable[..., str]:
    """
    Factory fixture signing an assertion.

    Usage in tests:
        raw = make_assertion(key, jti="other")      # default claims + override
        raw = make_assertion(key, iss=None)         # drop a claim
        raw = make_assertion(key, with_kid=False)   # no kid header
    """

    def _make(key: SigningKey, *, with_kid: bool = True, **overrides: Any) -> str:
        headers = {"kid": key.kid} if with_kid else {}
        return jwt.encode(
            default_claims(**overrides),
            key.private_key,
            algorithm=key.algorithm,
            headers=headers,
        )

    return _make


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def config() -> m.JWTBearerGrantConfig:
    return m.JWTBearerGrantConfig(token_url=TOKEN_URL, jwt_max_duration=timedelta(hours=1))


@pytest.fixture
def key_store() -> m.InMemoryKeyStore:
    return m.InMemoryKeyStore()


@pytest.fixture
def jti_store(clock: FrozenClock) -> m.InMemoryJTIStore:
    return m.InMemoryJTIStore(now=clock)


@pytest.fixture
def issuer(make_rsa_key, clock: FrozenClock) -> m.JWTAccessTokenIssuer:
    server_key = make_rsa_key(kid="as-1", index=1)
    return m.JWTAccessTokenIssuer(
        server_key.private_key, issuer="https://as.example", key_id="as-1", now=clock
    )


@pytest.fixture
def client() -> m.DefaultClient:
    return m.DefaultClient(client_id="client-1", grant_types=(m.GRANT_TYPE_JWT_BEARER,))


@pytest.fixture
def make_handler(key_store, jti_store, issuer, clock):
    def _make(config: m.JWTBearerGrantConfig, **kwargs: Any) -> m.JWTBearerGrantHandler:
        return m.JWTBearerGrantHandler(
            config=config,
            key_storage=kwargs.pop("key_storage", key_store),
            jti_storage=kwargs.pop("jti_storage", jti_store),
            access_token_issuer=issuer,
            now=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def handler(make_handler, config) -> m.JWTBearerGrantHandler:
    return make_handler(config)


@pytest.fixture
def make_request(client):
    def _make(
        assertion: str | None,
        *,
        scopes: list[str] | None = None,
        audience: list[str] | None = None,
        session: Any = None,
        grant_types: tuple[str, ...] = (m.GRANT_TYPE_JWT_BEARER,),
        request_client: Any = client,
    ) -> m.AccessRequest:
        form = {"grant_type": " ".join(grant_types)}
        if assertion is not None:
            form["assertion"] = assertion
        return m.AccessRequest(
            grant_types=grant_types,
            form=form,
            requested_scopes=list(scopes or []),
            requested_audience=list(audience or []),
            client=request_client,
            session=m.JWTBearerSession() if session is None else session,
        )

    return _make


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


class FakeRedis:
    """
    Minimal redis stub for the Redis store tests.
    Stores bytes under keys and supports set(nx, ex), setex, exists and hashes.
    """

    def __init__(self):
        self._store: dict[str, tuple[bytes, int | None]] = {}
        self._hashes: dict[str, dict[bytes, bytes]] = {}

    @staticmethod
    def _b(value: str | bytes) -> bytes:
        return value.encode("utf-8") if isinstance(value, str) else value

    def _live(self, key: str) -> bytes | None:
        item = self._store.get(key)
        if item is None:
            return None
        data, expires_at = item
        if expires_at is not None and int(time.time()) >= expires_at:
            self._store.pop(key, None)
            return None
        return data

    def get(self, key: str):
        return self._live(key)

    def setex(self, key: str, ttl_seconds: int, value: str | bytes):
        self._store[key] = (self._b(value), int(time.time()) + int(ttl_seconds))

    def set(self, key: str, value: str | bytes, nx: bool = False, ex: int | None = None):
        if nx and self._live(key) is not None:
            return None
        expires_at = int(time.time()) + int(ex) if ex is not None else None
        self._store[key] = (self._b(value), expires_at)
        return True

    def exists(self, *keys: str) -> int:
        return sum(1 for k in keys if self._live(k) is not None)

    def ttl(self, key: str) -> int:
        item = self._store.get(key)
        if item is None or item[1] is None:
            return -1
        return item[1] - int(time.time())

    def hset(self, name: str, key: str, value: str | bytes) -> int:
        self._hashes.setdefault(name, {})[self._b(key)] = self._b(value)
        return 1

    def hget(self, name: str, key: str):
        return self._hashes.get(name, {}).get(self._b(key))

    def hgetall(self, name: str):
        return dict(self._hashes.get(name, {}))

    def hdel(self, name: str, *keys: str) -> int:
        h = self._hashes.get(name, {})
        return sum(1 for k in keys if h.pop(self._b(k), None) is not None)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
