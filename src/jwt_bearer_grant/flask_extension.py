"""Flask extension exposing the JWT-bearer grant as a token endpoint.

This module is the transport glue between Flask and JWTBearerGrantHandler.
It registers a POST view that:

1. Loads the (already authenticated) client, if a loader is configured
2. Extracts an AccessRequest from the form body
3. Runs the validation phase, then the response phase
4. Renders RFC 6749 §5.1 (success) or §5.2 (error) JSON

Error mapping:
- ``UnknownRequest``  -> 400 ``unsupported_grant_type``
- ``OAuth2Error``     -> its ``error_code`` and ``to_dict()`` body
- anything else       -> 500 ``server_error`` (logged with traceback)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Final

from flask import Flask, jsonify

from .context import RequestContext
from .errors import OAuth2Error, ServerError, UnknownRequest, UnsupportedGrantType
from .extractors import AccessRequestExtractor
from .models import AccessResponse, JWTBearerSession

if TYPE_CHECKING:
    from .handler import JWTBearerGrantHandler
    from .protocols import Client

_EXT_KEY: Final[str] = "jwt_bearer_token_endpoint"
"""Flask extensions registry key for TokenEndpoint."""

_NO_CACHE_HEADERS: Final[dict[str, str]] = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}

logger = logging.getLogger(__name__)


class TokenEndpoint:
    """
    Flask glue for the JWT-bearer token endpoint.

    Responsibilities:
    - Build the AccessRequest (AccessRequestExtractor)
    - Run both handler phases
    - Convert domain errors to JSON error responses

    Client authentication is not performed here. ``client_loader`` returns
    the client some earlier layer authenticated, or None.

    Pattern:
        endpoint = TokenEndpoint(handler)
        endpoint.init_app(app, rule="/oauth2/token")
    """

    def __init__(
        self,
        handler: JWTBearerGrantHandler,
        *,
        client_loader: Callable[[], Client | None] | None = None,
        session_factory: Callable[[], Any] = JWTBearerSession,
        timeout: float | None = None,
        expose_debug: bool = False,
    ) -> None:
        """Initialize the token endpoint.

        Args:
            handler: The JWT-bearer grant handler.
            client_loader: Returns the authenticated client for the current
                request, or None.
            session_factory: Creates the session the handler populates.
            timeout: Per-request deadline in seconds. None disables it.
            expose_debug: Render ``error_debug`` in error bodies. Development
                only.
        """
        self._handler = handler
        self._client_loader = client_loader
        self._session_factory = session_factory
        self._timeout = timeout
        self._expose_debug = expose_debug
        self._extractor = AccessRequestExtractor()

    def init_app(self, app: Flask, *, rule: str = "/oauth2/token") -> None:
        """Register the token view on ``app``.

        Args:
            app (Flask): The Flask application instance.
            rule (str, optional): URL rule of the token endpoint.
        """
        app.add_url_rule(
            rule,
            endpoint=_EXT_KEY,
            view_func=self.token_view,
            methods=["POST"],
        )
        app.extensions[_EXT_KEY] = self

    def token_view(self) -> Any:
        """Handle one token request."""
        ctx = RequestContext(timeout=self._timeout)
        try:
            client = self._client_loader() if self._client_loader is not None else None
            access_request = self._extractor.extract(
                client=client, session=self._session_factory()
            )

            self._handler.handle_token_endpoint_request(ctx, access_request)

            access_response = AccessResponse()
            self._handler.populate_token_endpoint_response(ctx, access_request, access_response)

        except UnknownRequest:
            return self._error(UnsupportedGrantType())
        except OAuth2Error as e:
            return self._error(e)
        except Exception:
            logger.exception("token endpoint failed unexpectedly")
            return self._error(ServerError())

        return jsonify(access_response.to_dict()), 200, _NO_CACHE_HEADERS

    def _error(self, err: OAuth2Error) -> Any:
        body = err.to_dict(include_debug=self._expose_debug)
        return jsonify(body), err.error_code, _NO_CACHE_HEADERS
