"""Deadline and cancellation for one reconciliation pass."""

import threading
import time
from typing import Optional

from chaosoperator.errors import TransientStoreError


class Deadline:
    """Bounds every store round trip made during a pass.

    The trigger layer creates one per pass; the store asks it for the
    remaining budget before each call and passes that on as the HTTP
    request timeout.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        request_timeout: Optional[float] = None,
        cancelled: Optional[threading.Event] = None,
    ):
        """Initialize the deadline.

        Args:
            timeout: Seconds the whole pass may take, None for unbounded.
            request_timeout: Upper bound for a single request.
            cancelled: Event set by the caller to abort the pass.
        """
        self._expires_at = time.monotonic() + timeout if timeout is not None else None
        self.request_timeout = request_timeout
        self._cancelled = cancelled or threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when the pass is unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def check(self):
        """Raise if the pass was cancelled or ran out of time."""
        if self.cancelled:
            raise TransientStoreError("reconciliation cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise TransientStoreError("reconciliation deadline exceeded")

    def request_budget(self) -> Optional[float]:
        """Timeout for the next request: the smaller of both limits."""
        self.check()
        remaining = self.remaining()
        if remaining is None:
            return self.request_timeout
        if self.request_timeout is None:
            return remaining
        return min(remaining, self.request_timeout)
