"""
In-memory sliding-window rate limiter, one instance per process.

State is ephemeral: it does not survive a restart, and old timestamps fall
out of the window on the next check for that session. Every attempt is
recorded, including rejected ones, so a client that keeps hammering stays
throttled until it slows down.
"""

import threading
import time
from collections import deque
from typing import Callable

# Full sweep of idle sessions every N checks
_SWEEP_EVERY = 1024


class SlidingWindowRateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[str, tuple[float, deque[float]]] = {}
        self._checks = 0

    def check(self, session_id: str, limit: int, window_s: float) -> bool:
        """Record an attempt and return True if it is within ``limit`` per ``window_s``."""
        if not session_id:
            return True
        now = self._clock()
        with self._lock:
            _, hits = self._hits.get(session_id, (window_s, deque()))
            self._prune(hits, now, window_s)
            hits.append(now)
            self._hits[session_id] = (window_s, hits)

            self._checks += 1
            if self._checks % _SWEEP_EVERY == 0:
                self._sweep(now)
            return len(hits) <= limit

    def reset(self, session_id: str | None = None) -> None:
        with self._lock:
            if session_id is None:
                self._hits.clear()
            else:
                self._hits.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._hits)

    @staticmethod
    def _prune(hits: deque[float], now: float, window_s: float) -> None:
        while hits and now - hits[0] >= window_s:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            window_s, hits = self._hits[key]
            self._prune(hits, now, window_s)
            if not hits:
                del self._hits[key]
