"""
Rolling per-minute quota for upstream calls.

Tracks call timestamps in a trailing window and admits a call only while the
window holds fewer than ``limit`` entries. Admission and recording happen in
one locked step so two callers can never both take the last credit.
"""

import threading
from collections import deque
from typing import Callable, Deque, Optional

from core.clock import now_ms

WINDOW_MS = 60_000
DEFAULT_LIMIT = 7  # upstream hard cap is 8


class QuotaTracker:
    """Sliding-window call counter (timestamps in epoch ms)."""

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_ms: int = WINDOW_MS,
        clock: Callable[[], int] = now_ms,
    ):
        if limit < 1:
            raise ValueError("quota limit must be at least 1")
        self.limit = limit
        self.window_ms = window_ms
        self._clock = clock
        self._calls: Deque[int] = deque()
        self._lock = threading.Lock()
        self.denied = 0

    def _purge(self, now: int) -> None:
        while self._calls and now - self._calls[0] >= self.window_ms:
            self._calls.popleft()

    def try_admit(self, now: Optional[int] = None) -> bool:
        """Record a call at ``now`` and return True if the window has room."""
        now = self._clock() if now is None else now
        with self._lock:
            self._purge(now)
            if len(self._calls) >= self.limit:
                self.denied += 1
                return False
            # Keep the window ordered even if the clock steps backwards
            if self._calls and now < self._calls[-1]:
                now = self._calls[-1]
            self._calls.append(now)
            return True

    def used(self, now: Optional[int] = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            self._purge(now)
            return len(self._calls)

    def remaining(self, now: Optional[int] = None) -> int:
        return max(self.limit - self.used(now), 0)

    def next_free_in_ms(self, now: Optional[int] = None) -> int:
        """Milliseconds until the oldest call leaves the window (0 if there is room)."""
        now = self._clock() if now is None else now
        with self._lock:
            self._purge(now)
            if len(self._calls) < self.limit:
                return 0
            return max(self._calls[0] + self.window_ms - now, 0)

    def get_stats(self) -> dict:
        now = self._clock()
        return {
            "used": self.used(now),
            "limit": self.limit,
            "window_ms": self.window_ms,
            "remaining": self.remaining(now),
            "next_free_in_ms": self.next_free_in_ms(now),
            "denied": self.denied,
        }
