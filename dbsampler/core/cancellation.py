"""Cooperative cancellation for sampling runs."""

import threading
import time
from typing import Optional

from .exceptions import SamplingCancelled


class CancellationToken:
    """Stop flag plus optional deadline, checked before every blocking call.

    Set ``cancel()`` from another thread (or a signal handler) to abort a
    running sample at its next database round trip.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._event = threading.Event()
        self._reason = "cancelled"
        self.deadline = time.monotonic() + timeout_seconds if timeout_seconds else None

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self._reason = "deadline exceeded"
            self._event.set()
            return True
        return False

    def raise_if_cancelled(self, operation: str = "") -> None:
        if self.cancelled:
            where = f" before {operation}" if operation else ""
            raise SamplingCancelled(f"Sampling run {self._reason}{where}")
