"""
Integration tests for the demo authorization server.

Tests the complete JWT-bearer exchange through the example application.
"""

import base64
import json
import time
from pathlib import Path
from unittest.mock import patch

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from flask import Flask
from jwt.algorithms import RSAAlgorithm

TOKEN_URL = "https://as.test/oauth2/token"
ISSUER = "https://issuer.test"


@pytest.fixture(scope="module")
def issuer_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def server_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def app_with_grant(tmp_path: Path, issuer_private_key, server_private_key) -> Flask:
    """Create the demo app with one trusted issuer key and one client."""
    jwk = RSAAlgorithm.to_jwk(issuer_private_key.public_key(), as_dict=True)
    jwk.update({"kid": "kid1", "alg": "RS256"})
    trusted = tmp_path / "trusted_keys.json"
    trusted.write_text(
        json.dumps([{"issuer": ISSUER, "subject": "alice", "jwk": jwk, "scopes": ["read"]}])
    )

    signing = tmp_path / "signing_key.pem"
    signing.write_bytes(
        server_private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )

    with patch.dict(
        "os.environ",
        {
            "JWT_BEARER_TOKEN_URL": TOKEN_URL,
            "AS_ISSUER": "https://as.test",
            "AS_SIGNING_KEY_FILE": str(signing),
            "AS_SIGNING_KEY_ID": "as-test",
            "TRUSTED_KEYS_FILE": str(trusted),
            "OAUTH_CLIENT_ID": "demo-client",
            "OAUTH_CLIENT_SECRET": "demo-secret",
        },
    ):
        # Import here so environment variables are set
        from examples.token_server.backend import create_app

        app = create_app()
        app.config["TESTING"] = True

    return app


def _basic(user: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def _assertion(private_key, **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "sub": "alice",
        "aud": TOKEN_URL,
        "iat": now,
        "exp": now + 300,
        "jti": f"jti-{time.time_ns()}",
    }
    claims.update(overrides)
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": "kid1"})


class TestTokenExchange:
    """Full exchange through the demo server."""

    def test_exchange_and_verify_with_published_jwks(
        self, app_with_grant: Flask, issuer_private_key
    ):
        http = app_with_grant.test_client()
        resp = http.post(
            "/oauth2/token",
            data={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": _assertion(issuer_private_key),
                "scope": "read",
            },
            headers=_basic("demo-client", "demo-secret"),
        )

        assert resp.status_code == 200
        access_token = resp.get_json()["access_token"]

        jwks = http.get("/.well-known/jwks.json").get_json()
        assert jwks["keys"][0]["kid"] == "as-test"
        public_key = jwt.PyJWK.from_dict(jwks["keys"][0])

        claims = jwt.decode(
            access_token, public_key.key, algorithms=["RS256"], audience=TOKEN_URL
        )
        assert claims["iss"] == "https://as.test"
        assert claims["sub"] == "alice"
        assert claims["scope"] == "read"
        assert claims["client_id"] == "demo-client"

    def test_wrong_client_secret(self, app_with_grant: Flask, issuer_private_key):
        resp = app_with_grant.test_client().post(
            "/oauth2/token",
            data={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": _assertion(issuer_private_key),
            },
            headers=_basic("demo-client", "wrong"),
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "unauthorized_client"

    def test_unregistered_scope(self, app_with_grant: Flask, issuer_private_key):
        resp = app_with_grant.test_client().post(
            "/oauth2/token",
            data={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": _assertion(issuer_private_key),
                "scope": "admin",
            },
            headers=_basic("demo-client", "demo-secret"),
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "invalid_scope"


class TestAppRoutes:
    def test_unknown_route(self, app_with_grant: Flask):
        resp = app_with_grant.test_client().get("/nope")
        assert resp.status_code == 404
        assert resp.get_json()["status"] == "error"

    def test_token_endpoint_rejects_get(self, app_with_grant: Flask):
        assert app_with_grant.test_client().get("/oauth2/token").status_code == 405


def test_missing_issuer_setting():
    with patch.dict("os.environ", {"JWT_BEARER_TOKEN_URL": TOKEN_URL}, clear=True):
        from examples.token_server.backend import create_app

        with pytest.raises(RuntimeError, match="AS_ISSUER"):
            create_app()
