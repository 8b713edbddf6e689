"""Access token issuance for the response phase.

JWTAccessTokenIssuer mints a signed JWT access token from what the grant
handler stored on the request during validation: the session subject and
expiry, the granted scopes and the granted audiences.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt

from .config import ACCESS_TOKEN
from .context import check
from .errors import ServerError
from .protocols import OAuthSession
from .scopes import join_scopes

if TYPE_CHECKING:
    from .context import RequestContext
    from .models import AccessRequest, AccessResponse
    from .protocols import Clock

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class JWTAccessTokenIssuer:
    """Mints RFC 9068 style JWT access tokens.

    Parameters
    ----------
    signing_key : Any
        Private key accepted by ``jwt.encode`` for ``algorithm`` (a
        cryptography key object or PEM bytes).

    issuer : str
        ``iss`` of the minted tokens (the authorization server).

    key_id : str | None
        ``kid`` header, so resource servers can pick the key from a JWKS.

    algorithm : str
        Signing algorithm. Default: RS256.

    now : Clock
        Clock for ``iat`` and ``expires_in``.
    """

    def __init__(
        self,
        signing_key: Any,
        *,
        issuer: str,
        key_id: str | None = None,
        algorithm: str = "RS256",
        now: Clock = _utc_now,
    ) -> None:
        if not issuer:
            raise ValueError("issuer cannot be empty")
        self._signing_key = signing_key
        self._issuer = issuer
        self._key_id = key_id
        self._algorithm = algorithm
        self._now = now

    def issue_access_token(
        self,
        ctx: RequestContext | None,
        lifespan: timedelta,
        request: AccessRequest,
        response: AccessResponse,
    ) -> None:
        """Sign an access token for ``request`` and attach it to ``response``.

        The token expires at the session's access token expiry when the
        grant handler set one, else at ``now + lifespan``.

        Raises:
            ServerError: The token could not be signed.
        """
        check(ctx)
        now = self._now()
        session = request.session

        subject = ""
        expires_at: datetime | None = None
        if isinstance(session, OAuthSession):
            subject = session.get_subject()
            expires_at = session.get_expires_at(ACCESS_TOKEN)
        if expires_at is None:
            expires_at = now + lifespan

        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": subject,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": secrets.token_urlsafe(16),
        }
        if request.granted_audience:
            payload["aud"] = list(request.granted_audience)
        if request.client is not None:
            payload["client_id"] = request.client.client_id
        if request.granted_scopes:
            payload["scope"] = join_scopes(request.granted_scopes)

        headers = {"typ": "at+jwt"}
        if self._key_id:
            headers["kid"] = self._key_id

        try:
            token = jwt.encode(
                payload,
                self._signing_key,
                algorithm=self._algorithm,
                headers=headers,
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            logger.warning("access token signing failed: %s", e)
            raise ServerError(debug=str(e)) from e
        if isinstance(token, bytes):
            token = token.decode("utf-8")

        response.access_token = token
        response.token_type = "bearer"
        response.expires_in = max(0, int((expires_at - now).total_seconds()))
        response.scopes = list(request.granted_scopes)
