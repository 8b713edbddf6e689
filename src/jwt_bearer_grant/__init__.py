"""
RFC 7523 JWT-bearer grant for OAuth 2.0 token endpoints.

High-level flow (per token request)
-----------------------------------
1. `TokenEndpoint` (Flask) or your own framework builds an `AccessRequest`.
2. `JWTBearerGrantHandler.handle_token_endpoint_request(ctx, request)`:
   - Checks grant type and that the client may use it
   - Parses the `assertion` and reads unverified `iss`/`sub`
   - `KeyResolver` finds the registered public key (by `kid`, or by trying
     every key registered for the issuer/subject)
   - Verifies the signature with PyJWT
   - `ClaimValidator` applies the aud/exp/nbf/iat/jti rules
   - `ScopeAuthorizer` checks requested scopes against the key's scopes
   - `ReplayGuard` marks the `jti` used
   - Grants scopes/audiences and fills the session (subject, expiry)
3. `JWTBearerGrantHandler.populate_token_endpoint_response(...)` mints the
   access token through an `AccessTokenIssuer`.

Security notes
--------------
- Never trust claims until signature verification succeeds.
- Only allow asymmetric algorithms; registered keys are public keys.
- The `jti` is recorded only after every other check passed, so a rejected
  assertion can be retried with a corrected request.
- Replay protection is only as strong as the JTI store's atomic mark.

Example usage
-------------

.. code-block:: python

    from flask import Flask
    from jwt_bearer_grant import (
        InMemoryJTIStore,
        InMemoryKeyStore,
        JWTAccessTokenIssuer,
        JWTBearerGrantConfig,
        JWTBearerGrantHandler,
        TokenEndpoint,
    )

    keys = InMemoryKeyStore()
    keys.add_key("https://issuer.example", "alice", issuer_jwk, scopes=["read"])

    handler = JWTBearerGrantHandler(
        config=JWTBearerGrantConfig(token_url="https://as.example/oauth2/token"),
        key_storage=keys,
        jti_storage=InMemoryJTIStore(),
        access_token_issuer=JWTAccessTokenIssuer(
            server_private_key, issuer="https://as.example", key_id="as-1"
        ),
    )

    app = Flask(__name__)
    TokenEndpoint(handler, client_loader=load_client).init_app(app)
"""

# Assertion
from .assertion import SignedAssertion

# Claims
from .claims import AssertionClaims, ClaimValidator

# Configuration
from .config import ACCESS_TOKEN, GRANT_TYPE_JWT_BEARER, JWTBearerGrantConfig

# Request context
from .context import RequestContext

# Errors
from .errors import (
    InvalidGrant,
    InvalidRequest,
    InvalidScope,
    JTIKnown,
    KeyNotFoundError,
    OAuth2Error,
    ServerError,
    UnauthorizedClient,
    UnknownRequest,
    UnsupportedGrantType,
)

# Extractors
from .extractors import AccessRequestExtractor

# Flask extension
from .flask_extension import TokenEndpoint

# Handler
from .handler import JWTBearerGrantHandler

# Key resolution
from .key_resolver import KeyResolver

# Models
from .models import (
    AccessRequest,
    AccessResponse,
    DefaultClient,
    DefaultSession,
    JWTBearerSession,
    get_effective_lifespan,
)

# Protocols
from .protocols import (
    AccessTokenIssuer,
    AudienceMatchingStrategy,
    Claims,
    Client,
    ClientWithTokenLifespans,
    Clock,
    JTIStorage,
    KeyStorage,
    OAuthSession,
    ScopeStrategy,
    SubjectSession,
)

# Replay protection
from .replay import ReplayGuard

# Scopes and audiences
from .scopes import (
    ScopeAuthorizer,
    default_audience_matching_strategy,
    exact_audience_matching_strategy,
    exact_scope_strategy,
    hierarchic_scope_strategy,
    join_scopes,
    parse_scope_string,
    wildcard_scope_strategy,
)

# Stores
from .stores import InMemoryJTIStore, InMemoryKeyStore, RedisJTIStore, RedisKeyStore

# Token issuance
from .tokens import JWTAccessTokenIssuer

__all__ = [
    # Configuration
    "ACCESS_TOKEN",
    "GRANT_TYPE_JWT_BEARER",
    "JWTBearerGrantConfig",
    # Errors
    "InvalidGrant",
    "InvalidRequest",
    "InvalidScope",
    "JTIKnown",
    "KeyNotFoundError",
    "OAuth2Error",
    "ServerError",
    "UnauthorizedClient",
    "UnknownRequest",
    "UnsupportedGrantType",
    # Protocols
    "AccessTokenIssuer",
    "AudienceMatchingStrategy",
    "Claims",
    "Client",
    "ClientWithTokenLifespans",
    "Clock",
    "JTIStorage",
    "KeyStorage",
    "OAuthSession",
    "ScopeStrategy",
    "SubjectSession",
    # Models
    "AccessRequest",
    "AccessResponse",
    "DefaultClient",
    "DefaultSession",
    "JWTBearerSession",
    "get_effective_lifespan",
    # Request context
    "RequestContext",
    # Assertion and claims
    "AssertionClaims",
    "ClaimValidator",
    "SignedAssertion",
    # Key resolution
    "KeyResolver",
    # Replay protection
    "ReplayGuard",
    # Scopes and audiences
    "ScopeAuthorizer",
    "default_audience_matching_strategy",
    "exact_audience_matching_strategy",
    "exact_scope_strategy",
    "hierarchic_scope_strategy",
    "join_scopes",
    "parse_scope_string",
    "wildcard_scope_strategy",
    # Stores
    "InMemoryJTIStore",
    "InMemoryKeyStore",
    "RedisJTIStore",
    "RedisKeyStore",
    # Token issuance
    "JWTAccessTokenIssuer",
    # Handler
    "JWTBearerGrantHandler",
    # Flask
    "AccessRequestExtractor",
    "TokenEndpoint",
]
