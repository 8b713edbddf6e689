"""OAuth 2.0 token endpoint errors.

This module defines the exception hierarchy raised by the JWT-bearer grant.
All errors inherit from OAuth2Error so the enclosing framework can catch a
single type and render the RFC 6749 §5.2 error response.

Every error carries:
    - ``error``: the short machine-checkable error name (e.g. "invalid_grant")
    - ``error_code``: the HTTP status to answer with
    - ``description``: the fixed RFC text for that error kind
    - ``hint``: a longer, request-specific human explanation
    - ``debug``: internal detail (storage errors, library messages)

Security Note:
    ``debug`` is never rendered unless the caller explicitly asks for it.
    Storage and library error text belongs in server-side logs, not in
    responses.
"""

from __future__ import annotations

from typing import Any, ClassVar


class OAuth2Error(Exception):
    """Base exception for all token endpoint failures."""

    error: ClassVar[str] = "server_error"
    error_code: ClassVar[int] = 500
    description: ClassVar[str] = (
        "The authorization server encountered an unexpected condition that "
        "prevented it from fulfilling the request."
    )

    def __init__(self, hint: str | None = None, *, debug: str | None = None) -> None:
        self.hint = hint
        self.debug = debug
        super().__init__(self.full_description)

    @property
    def full_description(self) -> str:
        """Description followed by the hint, if any."""
        if self.hint:
            return f"{self.description} {self.hint}"
        return self.description

    def to_dict(self, *, include_debug: bool = False) -> dict[str, Any]:
        """Render the RFC 6749 §5.2 error body.

        Args:
            include_debug: Also render ``error_debug``. Only enable in
                development; debug text may contain storage details.
        """
        body: dict[str, Any] = {
            "error": self.error,
            "error_description": self.full_description,
        }
        if include_debug and self.debug:
            body["error_debug"] = self.debug
        return body


class UnknownRequest(OAuth2Error):  # noqa: N818
    """Raised when this handler is not responsible for the request.

    The enclosing framework should try the next grant handler.
    """

    error = "request_unknown"
    error_code = 400
    description = "The handler is not responsible for this request."


class UnsupportedGrantType(OAuth2Error):  # noqa: N818
    """Raised by the transport when no handler accepted the grant type."""

    error = "unsupported_grant_type"
    error_code = 400
    description = "The authorization grant type is not supported by the authorization server."


class InvalidRequest(OAuth2Error):  # noqa: N818
    """Raised for missing or malformed transport-level input."""

    error = "invalid_request"
    error_code = 400
    description = (
        "The request is missing a required parameter, includes an invalid "
        "parameter value, includes a parameter more than once, or is otherwise "
        "malformed."
    )


class UnauthorizedClient(OAuth2Error):  # noqa: N818
    """Raised when the authenticated client may not use this grant type."""

    error = "unauthorized_client"
    error_code = 400
    description = "The client is not authorized to request a token using this method."


class InvalidGrant(OAuth2Error):  # noqa: N818
    """Raised when the assertion itself is unacceptable.

    This occurs when:
    - The JWT is malformed or carries no claims
    - ``iss`` or ``sub`` is missing
    - No registered public key verifies the signature
    - ``aud``/``exp``/``nbf``/``iat``/``jti`` rules are violated
    - The token lifetime exceeds the configured maximum
    """

    error = "invalid_grant"
    error_code = 400
    description = (
        "The provided authorization grant (e.g., authorization code, resource "
        "owner credentials) or refresh token is invalid, expired, revoked, does "
        "not match the redirection URI used in the authorization request, or was "
        "issued to another client."
    )


class JTIKnown(InvalidGrant):
    """Raised when the assertion's JWT ID was already used."""

    error = "jti_known"
    description = "The jti was already used."


class InvalidScope(OAuth2Error):  # noqa: N818
    """Raised when a requested scope is not registered for the resolved key."""

    error = "invalid_scope"
    error_code = 400
    description = "The requested scope is invalid, unknown, or malformed."


class ServerError(OAuth2Error):  # noqa: N818
    """Raised on storage failures and inconsistent server-side wiring."""


class KeyNotFoundError(LookupError):
    """Raised by key storage when no key is registered under the lookup."""
