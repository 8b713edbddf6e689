"""Replay protection for assertion JWT IDs.

ReplayGuard is a thin layer over a JTIStorage that turns storage failures
into ServerError. Atomicity of check-and-mark is the store's responsibility;
see InMemoryJTIStore and RedisJTIStore.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from .context import check
from .errors import JTIKnown, OAuth2Error, ServerError

if TYPE_CHECKING:
    from .context import RequestContext
    from .protocols import JTIStorage

logger = logging.getLogger(__name__)


class ReplayGuard:
    """Checks and records single use of JWT IDs."""

    def __init__(self, storage: JTIStorage) -> None:
        self._storage = storage

    def is_used(self, ctx: RequestContext | None, jti: str) -> bool:
        """Return True if ``jti`` was already accepted and has not expired.

        Raises:
            ServerError: The store failed or the request was cancelled.
        """
        check(ctx)
        try:
            return self._storage.is_jwt_used(ctx, jti)
        except OAuth2Error:
            raise
        except Exception as e:
            logger.debug("replay store lookup failed for jti=%s: %s", jti, e)
            raise ServerError(debug=str(e)) from e

    def mark_used(self, ctx: RequestContext | None, jti: str, until: datetime) -> None:
        """Record ``jti`` as used until ``until``.

        Raises:
            JTIKnown: A concurrent request marked the same ID first.
            ServerError: The store failed or the request was cancelled.
        """
        check(ctx)
        try:
            self._storage.mark_jwt_used_for_time(ctx, jti, until)
        except JTIKnown:
            logger.info("replay store refused already-marked jti=%s", jti)
            raise
        except OAuth2Error:
            raise
        except Exception as e:
            logger.debug("replay store mark failed for jti=%s: %s", jti, e)
            raise ServerError(debug=str(e)) from e
