import hmac
import json
import logging
import os
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from dotenv import load_dotenv
from flask import request
from jwt import PyJWK

from jwt_bearer_grant import (
    GRANT_TYPE_JWT_BEARER,
    DefaultClient,
    InMemoryJTIStore,
    InMemoryKeyStore,
    JWTAccessTokenIssuer,
    JWTBearerGrantConfig,
    JWTBearerGrantHandler,
    RedisJTIStore,
    RedisKeyStore,
    TokenEndpoint,
)

load_dotenv()
logger = logging.getLogger(__name__)


def load_settings() -> dict[str, Any]:
    """Read the demo server settings from the environment."""
    return {
        "AS_ISSUER": os.environ.get("AS_ISSUER"),
        "AS_SIGNING_KEY_FILE": os.environ.get("AS_SIGNING_KEY_FILE"),
        "AS_SIGNING_KEY_ID": os.environ.get("AS_SIGNING_KEY_ID", "as-1"),
        "TRUSTED_KEYS_FILE": os.environ.get("TRUSTED_KEYS_FILE"),
        "OAUTH_CLIENT_ID": os.environ.get("OAUTH_CLIENT_ID"),
        "OAUTH_CLIENT_SECRET": os.environ.get("OAUTH_CLIENT_SECRET"),
        "REDIS_URL": os.environ.get("REDIS_URL"),
        "TOKEN_TIMEOUT": os.environ.get("TOKEN_TIMEOUT"),
    }


def load_signing_key(settings: dict[str, Any]) -> Any:
    """Load the authorization server's private key, or generate a throwaway one."""
    path = settings["AS_SIGNING_KEY_FILE"]
    if not path:
        logger.warning("AS_SIGNING_KEY_FILE not set, generating an ephemeral signing key")
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return serialization.load_pem_private_key(Path(path).read_bytes(), password=None)


def _redis_client(url: str) -> Any:
    import redis

    return redis.Redis.from_url(url)


def load_trusted_keys(store: InMemoryKeyStore | RedisKeyStore, path: str | None) -> int:
    """Register issuer keys from a JSON file.

    The file holds a list of ``{"issuer", "subject", "jwk", "scopes"}``
    objects. Returns the number of keys registered.
    """
    if not path:
        return 0
    entries = json.loads(Path(path).read_text())
    for entry in entries:
        store.add_key(
            entry["issuer"],
            entry["subject"],
            PyJWK.from_dict(entry["jwk"]),
            scopes=entry.get("scopes", []),
        )
    return len(entries)


def build_client_loader(settings: dict[str, Any]):
    """HTTP Basic client authentication against the single configured client."""
    client_id = settings["OAUTH_CLIENT_ID"]
    client_secret = settings["OAUTH_CLIENT_SECRET"] or ""
    if not client_id:
        return None

    client = DefaultClient(client_id=client_id, grant_types=(GRANT_TYPE_JWT_BEARER,))

    def load_client() -> DefaultClient | None:
        auth = request.authorization
        if auth is None or auth.username != client_id:
            return None
        if not hmac.compare_digest((auth.password or "").encode(), client_secret.encode()):
            return None
        return client

    return load_client


def build_token_endpoint(settings: dict[str, Any], signing_key: Any) -> TokenEndpoint:
    """Wire stores, issuer, handler and Flask endpoint from ``settings``."""
    grant_config = JWTBearerGrantConfig.from_env()

    if settings["REDIS_URL"]:
        redis_client = _redis_client(settings["REDIS_URL"])
        key_store: InMemoryKeyStore | RedisKeyStore = RedisKeyStore(redis_client)
        jti_store: InMemoryJTIStore | RedisJTIStore = RedisJTIStore(redis_client)
    else:
        key_store = InMemoryKeyStore()
        jti_store = InMemoryJTIStore()

    count = load_trusted_keys(key_store, settings["TRUSTED_KEYS_FILE"])
    logger.info("registered %d trusted issuer key(s)", count)

    issuer = JWTAccessTokenIssuer(
        signing_key,
        issuer=settings["AS_ISSUER"],
        key_id=settings["AS_SIGNING_KEY_ID"],
    )
    handler = JWTBearerGrantHandler(
        config=grant_config,
        key_storage=key_store,
        jti_storage=jti_store,
        access_token_issuer=issuer,
    )

    timeout = float(settings["TOKEN_TIMEOUT"]) if settings["TOKEN_TIMEOUT"] else None
    return TokenEndpoint(
        handler,
        client_loader=build_client_loader(settings),
        timeout=timeout,
    )
