"""RFC 7523 JWT-bearer grant handler.

JWTBearerGrantHandler plugs into the two-phase token endpoint lifecycle:

1. ``handle_token_endpoint_request`` validates the assertion and, on
   success, writes grants and session data onto the request.
2. ``populate_token_endpoint_response`` mints the access token.

Validation steps, each a hard gate:
   - grant type / client checks
   - ``assertion`` parameter present
   - JWS parses; unverified ``iss`` and ``sub`` present
   - a registered key verifies the signature
   - claim rules (ClaimValidator)
   - requested scopes are registered for the key
   - ``jti`` marked used (the only persistent side effect, done last)
   - session populated

No state is kept between requests; keys and replay records live in the
injected stores.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from .assertion import SignedAssertion
from .claims import AssertionClaims, ClaimValidator
from .config import ACCESS_TOKEN, GRANT_TYPE_JWT_BEARER
from .context import check
from .errors import (
    InvalidGrant,
    InvalidRequest,
    OAuth2Error,
    ServerError,
    UnauthorizedClient,
    UnknownRequest,
)
from .key_resolver import KeyResolver
from .models import get_effective_lifespan
from .protocols import OAuthSession, SubjectSession
from .replay import ReplayGuard
from .scopes import (
    ScopeAuthorizer,
    default_audience_matching_strategy,
    hierarchic_scope_strategy,
)

if TYPE_CHECKING:
    from .config import JWTBearerGrantConfig
    from .context import RequestContext
    from .models import AccessRequest, AccessResponse
    from .protocols import (
        AccessTokenIssuer,
        AudienceMatchingStrategy,
        Clock,
        JTIStorage,
        KeyStorage,
        ScopeStrategy,
    )

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class _GrantSession(OAuthSession, SubjectSession, Protocol):
    """A session exposing both the generic and the subject capability."""


def round_to_second(value: datetime) -> datetime:
    """Round to the nearest whole second, halves away from zero."""
    base = value.replace(microsecond=0)
    if value.microsecond >= 500_000:
        return base + timedelta(seconds=1)
    return base


class JWTBearerGrantHandler:
    """Token endpoint handler for ``urn:ietf:params:oauth:grant-type:jwt-bearer``.

    Thread Safety:
        The handler holds only immutable configuration and references to
        thread-safe collaborators. Replay protection relies on the JTI store
        marking IDs atomically.

    Example:
        ```python
        handler = JWTBearerGrantHandler(
            config=JWTBearerGrantConfig(token_url="https://as.example/token"),
            key_storage=keys,
            jti_storage=InMemoryJTIStore(),
            access_token_issuer=JWTAccessTokenIssuer(private_key, issuer="https://as.example"),
        )

        request = AccessRequest(grant_types=(GRANT_TYPE_JWT_BEARER,), form=form, ...)
        handler.handle_token_endpoint_request(ctx, request)
        response = AccessResponse()
        handler.populate_token_endpoint_response(ctx, request, response)
        ```
    """

    def __init__(
        self,
        config: JWTBearerGrantConfig,
        key_storage: KeyStorage,
        jti_storage: JTIStorage,
        access_token_issuer: AccessTokenIssuer,
        *,
        scope_strategy: ScopeStrategy = hierarchic_scope_strategy,
        audience_strategy: AudienceMatchingStrategy = default_audience_matching_strategy,
        now: Clock = _utc_now,
    ) -> None:
        """Initialize the handler.

        Args:
            config: Immutable grant configuration.
            key_storage: Registry of trusted keys and their scopes.
            jti_storage: Replay records.
            access_token_issuer: Mints the token in the response phase.
            scope_strategy: Decides if a requested scope is registered.
            audience_strategy: Matches requested audiences; only consulted
                when ``config.match_requested_audience`` is set.
            now: UTC clock used for claim validation and session expiry.
        """
        self.config = config
        self._keys = key_storage
        self._issuer = access_token_issuer
        self._audience_strategy = audience_strategy
        self._now = now

        self._replay = ReplayGuard(jti_storage)
        self._resolver = KeyResolver(key_storage, config.algorithms)
        self._validator = ClaimValidator(config, self._replay)
        self._scopes = ScopeAuthorizer(scope_strategy)

    # ------------------------------------------------------------------
    # Request checks
    # ------------------------------------------------------------------

    def can_handle_token_endpoint_request(self, request: AccessRequest) -> bool:
        return request.has_exactly_one_grant_type(GRANT_TYPE_JWT_BEARER)

    def can_skip_client_auth(self, request: AccessRequest) -> bool:
        return self.config.skip_client_auth

    def check_request(self, request: AccessRequest) -> None:
        """Confirm this handler owns the request and the client may use it.

        Raises:
            UnknownRequest: The grant type is not JWT-bearer.
            UnauthorizedClient: The client is not registered for JWT-bearer.
        """
        if not self.can_handle_token_endpoint_request(request):
            raise UnknownRequest()

        # Client authentication is optional (RFC 7523 §3.1); when the client
        # is authenticated it must be registered for this grant type.
        if not self.can_skip_client_auth(request):
            client = request.client
            if client is None or GRANT_TYPE_JWT_BEARER not in client.grant_types:
                raise UnauthorizedClient(
                    "The OAuth 2.0 Client is not allowed to use authorization grant "
                    f'"{GRANT_TYPE_JWT_BEARER}".'
                )

    # ------------------------------------------------------------------
    # Validation phase
    # ------------------------------------------------------------------

    def handle_token_endpoint_request(
        self, ctx: RequestContext | None, request: AccessRequest
    ) -> None:
        """Validate the assertion and populate the request's grants and session.

        Raises:
            UnknownRequest, UnauthorizedClient, InvalidRequest, InvalidGrant,
            JTIKnown, InvalidScope, ServerError
        """
        try:
            self._handle(ctx, request)
        except ServerError as e:
            logger.warning(
                "jwt-bearer grant failed request_id=%s: %s (%s)",
                request.request_id,
                e.full_description,
                e.debug or e.__cause__,
            )
            raise
        except UnknownRequest:
            raise
        except OAuth2Error as e:
            logger.info(
                "jwt-bearer grant rejected request_id=%s error=%s hint=%s",
                request.request_id,
                e.error,
                e.hint,
            )
            raise

    def _handle(self, ctx: RequestContext | None, request: AccessRequest) -> None:
        self.check_request(request)

        raw = request.form.get("assertion", "")
        if not raw:
            raise InvalidRequest(
                "The assertion request parameter must be set when using grant_type of "
                f"'{GRANT_TYPE_JWT_BEARER}'."
            )

        assertion = SignedAssertion.parse(raw)

        issuer, subject = self._unverified_issuer_subject(assertion)

        key, payload = self._resolver.resolve(ctx, assertion, issuer, subject)
        claims = SignedAssertion.typed_claims(payload)

        self._validator.validate(ctx, claims, self._now())

        scopes = self._registered_scopes(ctx, claims, key.key_id or "")
        self._scopes.authorize(
            scopes,
            request.requested_scopes,
            issuer=claims.issuer,
            subject=claims.subject,
        )

        if self.config.match_requested_audience:
            self._audience_strategy(claims.audience, request.requested_audience)

        if claims.jwt_id:
            # expires_at is set: ClaimValidator rejected claims without it
            self._replay.mark_used(ctx, claims.jwt_id, claims.expires_at)  # type: ignore[arg-type]

        session = self._session(request)

        for scope in request.requested_scopes:
            request.grant_scope(scope)
        for audience in claims.audience:
            request.grant_audience(audience)

        lifespan = get_effective_lifespan(
            request.client,
            GRANT_TYPE_JWT_BEARER,
            ACCESS_TOKEN,
            self.config.access_token_lifespan,
        )
        session.set_expires_at(ACCESS_TOKEN, round_to_second(self._now() + lifespan))
        session.set_subject(claims.subject)

        logger.info(
            "jwt-bearer grant accepted request_id=%s client_id=%s iss=%s sub=%s scopes=%s",
            request.request_id,
            request.client.client_id if request.client is not None else None,
            claims.issuer,
            claims.subject,
            request.granted_scopes,
        )

    @staticmethod
    def _unverified_issuer_subject(assertion: SignedAssertion) -> tuple[str, str]:
        unverified = assertion.unverified_claims()
        issuer = unverified.get("iss")
        subject = unverified.get("sub")
        if not isinstance(issuer, str) or not issuer:
            raise InvalidGrant(
                'The JWT in "assertion" request parameter MUST contain an "iss" (issuer) claim.'
            )
        if not isinstance(subject, str) or not subject:
            raise InvalidGrant(
                'The JWT in "assertion" request parameter MUST contain a "sub" (subject) claim.'
            )
        return issuer, subject

    def _registered_scopes(
        self, ctx: RequestContext | None, claims: AssertionClaims, key_id: str
    ) -> Sequence[str]:
        check(ctx)
        try:
            return self._keys.get_public_key_scopes(ctx, claims.issuer, claims.subject, key_id)
        except ServerError:
            raise
        except Exception as e:
            raise ServerError(debug=str(e)) from e

    @staticmethod
    def _session(request: AccessRequest) -> _GrantSession:
        session = request.session
        if not isinstance(session, OAuthSession) or not isinstance(session, SubjectSession):
            raise ServerError(
                "Session must implement both OAuthSession and SubjectSession but got "
                f"type: {type(session).__name__}"
            )
        return session  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Response phase
    # ------------------------------------------------------------------

    def populate_token_endpoint_response(
        self,
        ctx: RequestContext | None,
        request: AccessRequest,
        response: AccessResponse,
    ) -> None:
        """Mint the access token for a request that passed validation.

        Raises:
            UnknownRequest, UnauthorizedClient, ServerError
        """
        self.check_request(request)

        lifespan = get_effective_lifespan(
            request.client,
            GRANT_TYPE_JWT_BEARER,
            ACCESS_TOKEN,
            self.config.access_token_lifespan,
        )
        self._issuer.issue_access_token(ctx, lifespan, request, response)
