"""Token request extraction from Flask requests.

AccessRequestExtractor turns an ``application/x-www-form-urlencoded`` token
request (RFC 6749 §4.5, RFC 7523 §2.1) into an AccessRequest:

    POST /oauth2/token
    grant_type=urn:ietf:params:oauth:grant-type:jwt-bearer
    &assertion=eyJhbGciOiJSUzI1NiIsImtpZCI6IjE2In0.eyJpc3Mi...
    &scope=read%20write

Security Considerations:
- Only the request body is read; assertions in query strings end up in
  access logs and are ignored.
- Parameters RFC 6749 §3.2 says MUST NOT repeat are rejected when repeated.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final

from flask import request

from .errors import InvalidRequest
from .models import AccessRequest
from .scopes import parse_scope_string

if TYPE_CHECKING:
    from .protocols import Client

_SINGLE_VALUED: Final[tuple[str, ...]] = ("grant_type", "assertion", "scope")


class AccessRequestExtractor:
    """Builds an AccessRequest from the current Flask request body.

    Example:
        ```python
        extractor = AccessRequestExtractor()
        access_request = extractor.extract(client=client, session=JWTBearerSession())
        ```
    """

    def extract(self, *, client: Client | None = None, session: Any = None) -> AccessRequest:
        """Read the token request parameters from ``flask.request.form``.

        Args:
            client: The already-authenticated client, if any.
            session: Session object the grant handler will populate.

        Returns:
            AccessRequest with grant types, requested scopes/audiences and
            the flattened form.

        Raises:
            InvalidRequest: ``grant_type`` is missing or a single-valued
                parameter was sent more than once.
        """
        form = request.form

        for name in _SINGLE_VALUED:
            if len(form.getlist(name)) > 1:
                raise InvalidRequest(f'The "{name}" parameter must not be included more than once.')

        grant_types = tuple(form.get("grant_type", "").split())
        if not grant_types:
            raise InvalidRequest('The "grant_type" parameter is missing.')

        audience: list[str] = []
        for value in form.getlist("audience"):
            for item in parse_scope_string(value):
                if item not in audience:
                    audience.append(item)

        return AccessRequest(
            grant_types=grant_types,
            form=form.to_dict(flat=True),
            requested_scopes=parse_scope_string(form.get("scope", "")),
            requested_audience=audience,
            client=client,
            session=session,
        )
