"""
Sliding-window request limiter guarding the JWKS origin.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict, Any


class SlidingWindowRateLimiter:
    """Allow at most ``limit`` acquisitions per ``window_seconds``.

    Process-local; the key resolver is the only caller and runs on one event
    loop, so no lock is taken.
    """

    def __init__(self, limit: int, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._calls: Deque[float] = deque()

    def _evict(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    def try_acquire(self) -> bool:
        """Record a call and return True, or return False if over budget."""
        now = self._clock()
        self._evict(now)
        if len(self._calls) >= self.limit:
            return False
        self._calls.append(now)
        return True

    def retry_after(self) -> float:
        """Seconds until the next call would be admitted."""
        now = self._clock()
        self._evict(now)
        if len(self._calls) < self.limit:
            return 0.0
        return max(0.0, self.window_seconds - (now - self._calls[0]))

    def get_state(self) -> Dict[str, Any]:
        now = self._clock()
        self._evict(now)
        return {
            "limit": self.limit,
            "window_seconds": self.window_seconds,
            "used": len(self._calls),
            "remaining": max(0, self.limit - len(self._calls)),
        }
