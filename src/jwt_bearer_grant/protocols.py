"""Protocol definitions for the JWT-bearer grant.

This module defines structural interfaces using Protocol (PEP 544) for:
- Public key storage
- JWT ID (replay) storage
- Scope and audience matching strategies
- Access token issuance
- OAuth 2.0 clients and sessions

Using protocols allows for duck-typing and easier testing/mocking without
requiring explicit inheritance. Any class that implements the required methods
satisfies the protocol.

The session protocols are ``runtime_checkable`` so the grant handler can test
a concrete session for each capability independently.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias, runtime_checkable

if TYPE_CHECKING:
    from jwt import PyJWK

    from .context import RequestContext
    from .models import AccessRequest, AccessResponse

# ============================================================================
# Type Aliases
# ============================================================================

Claims: TypeAlias = Mapping[str, Any]
"""Represents a decoded JWT payload as an immutable mapping."""

ScopeStrategy: TypeAlias = Callable[[Sequence[str], str], bool]
"""Decides whether ``requested`` scope is covered by the ``registered`` scopes."""

AudienceMatchingStrategy: TypeAlias = Callable[[Sequence[str], Sequence[str]], None]
"""Raises InvalidRequest unless every needle audience matches the haystack."""

Clock: TypeAlias = Callable[[], datetime]
"""Returns the current time as a timezone-aware UTC datetime."""


# ============================================================================
# Storage Protocols
# ============================================================================


class KeyStorage(Protocol):
    """Protocol for the registry of trusted assertion-signing keys.

    Keys are addressed by the triple (issuer, subject, key-id). Each key has
    an ordered list of scopes the holder of the private key may request.

    Implementations must be safe for concurrent use.
    """

    def get_public_key(
        self, ctx: RequestContext | None, issuer: str, subject: str, key_id: str
    ) -> PyJWK:
        """Return the key registered under (issuer, subject, key_id).

        Raises:
            KeyNotFoundError: No such key.
        """
        ...

    def get_public_keys(
        self, ctx: RequestContext | None, issuer: str, subject: str
    ) -> Sequence[PyJWK]:
        """Return every key registered under (issuer, subject).

        The returned order is the order in which the handler will try them.
        """
        ...

    def get_public_key_scopes(
        self, ctx: RequestContext | None, issuer: str, subject: str, key_id: str
    ) -> Sequence[str]:
        """Return the scopes registered for (issuer, subject, key_id)."""
        ...


class JTIStorage(Protocol):
    """Protocol for JWT ID replay records.

    ``mark_jwt_used_for_time`` must be atomic with respect to concurrent
    marks of the same ID: when the ID is already recorded and not expired it
    must raise JTIKnown instead of overwriting the record. The handler does
    no locking of its own.
    """

    def is_jwt_used(self, ctx: RequestContext | None, jti: str) -> bool:
        """Return True if ``jti`` is recorded and not yet expired."""
        ...

    def mark_jwt_used_for_time(
        self, ctx: RequestContext | None, jti: str, expires_at: datetime
    ) -> None:
        """Record ``jti`` as used until ``expires_at``.

        Raises:
            JTIKnown: ``jti`` was already recorded and has not expired.
        """
        ...


# ============================================================================
# Client / Session Protocols
# ============================================================================


class Client(Protocol):
    """The OAuth 2.0 client making the token request."""

    @property
    def client_id(self) -> str: ...

    @property
    def grant_types(self) -> Sequence[str]: ...


@runtime_checkable
class ClientWithTokenLifespans(Protocol):
    """A client that overrides token lifespans per grant and token type."""

    def get_effective_lifespan(
        self, grant_type: str, token_type: str, fallback: timedelta
    ) -> timedelta: ...


@runtime_checkable
class OAuthSession(Protocol):
    """Generic session capability shared by every grant type."""

    def set_expires_at(self, token_type: str, expires_at: datetime) -> None: ...

    def get_expires_at(self, token_type: str) -> datetime | None: ...

    def get_subject(self) -> str: ...


@runtime_checkable
class SubjectSession(Protocol):
    """JWT-bearer specific session capability: setting the subject."""

    def set_subject(self, subject: str) -> None: ...


# ============================================================================
# Issuance Protocol
# ============================================================================


class AccessTokenIssuer(Protocol):
    """Protocol for minting the access token during the response phase."""

    def issue_access_token(
        self,
        ctx: RequestContext | None,
        lifespan: timedelta,
        request: AccessRequest,
        response: AccessResponse,
    ) -> None:
        """Mint an access token for ``request`` and attach it to ``response``.

        Raises:
            ServerError: The token could not be generated.
        """
        ...
