"""Per-request cancellation and deadline handling.

A RequestContext is created by the transport for each token request and
passed down to every storage and verification call. Components call
``raise_if_done()`` before blocking work so a cancelled or timed-out request
stops promptly instead of finishing its remaining lookups.
"""

from __future__ import annotations

import threading
import time

from .errors import ServerError


class RequestContext:
    """Thread-safe cancellation flag with an optional monotonic deadline.

    Attributes:
        _deadline: ``time.monotonic()`` value after which the request is done,
            or None for no deadline.
        _cancelled: Event set by ``cancel()``.
    """

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize the context.

        Args:
            timeout: Seconds from now until the deadline. None disables it.

        Raises:
            ValueError: If timeout is not positive.
        """
        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        self._deadline = None if timeout is None else time.monotonic() + timeout
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        """Seconds left until the deadline (never negative), or None."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_done(self) -> None:
        """Abort the request if it was cancelled or its deadline passed.

        Raises:
            ServerError: The request was cancelled or ran out of time.
        """
        if self._cancelled.is_set():
            raise ServerError("The request was cancelled.")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise ServerError("The request deadline was exceeded.")


def check(ctx: RequestContext | None) -> None:
    """Call ``ctx.raise_if_done()`` when a context was supplied."""
    if ctx is not None:
        ctx.raise_if_done()
