"""Token endpoint request/response, client and session models.

These are plain containers created and discarded within one token request.
The grant handler reads the request, writes grants and session data onto it
during validation, and the issuer writes the token onto the response.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from .protocols import ClientWithTokenLifespans

if TYPE_CHECKING:
    from .protocols import Client


@dataclass(frozen=True, slots=True)
class DefaultClient:
    """Minimal OAuth 2.0 client record.

    Attributes:
        client_id: Public client identifier.
        grant_types: Grant types this client is registered for.
        token_lifespans: Optional overrides keyed by (grant_type, token_type).
    """

    client_id: str
    grant_types: tuple[str, ...] = ()
    token_lifespans: Mapping[tuple[str, str], timedelta] = field(default_factory=dict)

    def get_effective_lifespan(
        self, grant_type: str, token_type: str, fallback: timedelta
    ) -> timedelta:
        return self.token_lifespans.get((grant_type, token_type), fallback)


def get_effective_lifespan(
    client: Client | None, grant_type: str, token_type: str, fallback: timedelta
) -> timedelta:
    """Return the lifespan the client configured for this grant/token type.

    Clients that do not implement ClientWithTokenLifespans get ``fallback``.
    """
    if isinstance(client, ClientWithTokenLifespans):
        return client.get_effective_lifespan(grant_type, token_type, fallback)
    return fallback


@dataclass(slots=True)
class DefaultSession:
    """Generic OAuth 2.0 session: token expiry times and a subject."""

    subject: str = ""
    expires_at: dict[str, datetime] = field(default_factory=dict)

    def set_expires_at(self, token_type: str, expires_at: datetime) -> None:
        self.expires_at[token_type] = expires_at

    def get_expires_at(self, token_type: str) -> datetime | None:
        return self.expires_at.get(token_type)

    def get_subject(self) -> str:
        return self.subject


@dataclass(slots=True)
class JWTBearerSession(DefaultSession):
    """Session for the JWT-bearer grant; the subject comes from the assertion."""

    def set_subject(self, subject: str) -> None:
        self.subject = subject


def _new_request_id() -> str:
    return secrets.token_hex(16)


@dataclass(slots=True)
class AccessRequest:
    """An inbound token endpoint request.

    Attributes:
        grant_types: Values of the ``grant_type`` parameter.
        form: The raw form parameters.
        requested_scopes: Scopes from the ``scope`` parameter.
        requested_audience: Audiences from the ``audience`` parameter.
        client: The authenticated client, if any.
        session: Session populated by the grant handler.
        granted_scopes: Scopes granted during validation.
        granted_audience: Audiences granted during validation.
    """

    grant_types: tuple[str, ...]
    form: Mapping[str, str] = field(default_factory=dict)
    requested_scopes: list[str] = field(default_factory=list)
    requested_audience: list[str] = field(default_factory=list)
    client: Client | None = None
    session: Any = None
    granted_scopes: list[str] = field(default_factory=list)
    granted_audience: list[str] = field(default_factory=list)
    request_id: str = field(default_factory=_new_request_id)

    def has_exactly_one_grant_type(self, grant_type: str) -> bool:
        return len(self.grant_types) == 1 and self.grant_types[0] == grant_type

    def grant_scope(self, scope: str) -> None:
        if scope not in self.granted_scopes:
            self.granted_scopes.append(scope)

    def grant_audience(self, audience: str) -> None:
        if audience not in self.granted_audience:
            self.granted_audience.append(audience)


@dataclass(slots=True)
class AccessResponse:
    """Successful token endpoint response (RFC 6749 §5.1)."""

    access_token: str = ""
    token_type: str = ""
    expires_in: int | None = None
    scopes: Sequence[str] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
        }
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        if self.scopes:
            body["scope"] = " ".join(self.scopes)
        body.update(self.extra)
        return body
