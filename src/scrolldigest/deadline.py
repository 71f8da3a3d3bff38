from __future__ import annotations

import threading
import time

from .errors import CancelledError


class Deadline:
    """Caller-supplied cancel signal plus an optional wall-clock budget.

    Every long-running call (login wait, page loads, scroll-collect, batch
    dispatch) takes one of these so it can stop when the caller goes away.
    """

    def __init__(self, timeout_sec: float | None = None, cancel: threading.Event | None = None):
        self.cancel = cancel or threading.Event()
        self._end = time.monotonic() + timeout_sec if timeout_sec is not None else None

    def child(self, timeout_sec: float | None) -> "Deadline":
        """Same cancel signal, budget = min(ours, timeout_sec)."""
        d = Deadline(timeout_sec, self.cancel)
        if self._end is not None and (d._end is None or self._end < d._end):
            d._end = self._end
        return d

    def remaining(self) -> float | None:
        if self._end is None:
            return None
        return max(0.0, self._end - time.monotonic())

    def expired(self) -> bool:
        r = self.remaining()
        return r is not None and r <= 0.0

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    def check(self) -> None:
        if self.cancel.is_set():
            raise CancelledError("operation cancelled")

    def sleep(self, seconds: float) -> None:
        """Block for `seconds`, waking early (and raising) on cancel."""
        r = self.remaining()
        if r is not None:
            seconds = min(seconds, r)
        if seconds > 0 and self.cancel.wait(seconds):
            raise CancelledError("operation cancelled")
        self.check()
