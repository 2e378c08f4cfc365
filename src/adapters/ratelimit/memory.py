"""
In-process rate counter store - Implements RateCounterStore protocol.

Counters live in a dict keyed by the window key the limiter builds.
Does not work across multiple server instances; use the Redis store
when the API is scaled out.
"""

import threading
import time


class InMemoryRateCounterStore:
    """
    Implements RateCounterStore protocol with a dict of expiring counters.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # Format: {key: (count, expires_at_monotonic)}
        self._counters: dict[str, tuple[int, float]] = {}

    def increment(self, key: str, window_seconds: int) -> int:
        now = time.monotonic()
        with self._lock:
            self._purge(now)
            count, expires_at = self._counters.get(key, (0, now + window_seconds))
            count += 1
            self._counters[key] = (count, expires_at)
            return count

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]
