# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""Sliding-window rate limiter keyed by client IP."""
import threading
import time
from typing import Callable


class SlidingWindowRateLimiter:
    def __init__(self, max_requests: int, window_seconds: float = 60,
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window = window_seconds
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    def is_allowed(self, key: str) -> tuple[bool, int, int]:
        """Returns (allowed, remaining, retry_after_seconds)."""
        with self._lock:
            now = self._clock()
            cutoff = now - self.window
            if now - self._last_prune >= self.window:
                self._prune(cutoff)
                self._last_prune = now

            timestamps = [t for t in self._hits.get(key, ()) if t > cutoff]
            if len(timestamps) >= self.max_requests:
                self._hits[key] = timestamps
                retry_after = int(timestamps[0] - cutoff) + 1
                return False, 0, retry_after
            timestamps.append(now)
            self._hits[key] = timestamps
            return True, self.max_requests - len(timestamps), 0

    def _prune(self, cutoff: float):
        # Clients idle for a whole window hold no live hits.
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def __len__(self) -> int:
        return len(self._hits)
