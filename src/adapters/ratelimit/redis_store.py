"""
Redis rate counter store - Implements RateCounterStore protocol.

Fixed-window counters: INCR plus EXPIRE in one pipeline so the key
disappears when its window rolls over. Connection and command errors
are reported as RateStoreUnavailable and the limiter fails open.
"""

import logging

from redis import Redis
from redis.exceptions import RedisError

from src.domain.exceptions import RateStoreUnavailable

logger = logging.getLogger(__name__)


class RedisRateCounterStore:
    """Implements RateCounterStore protocol via redis-py."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 0.5) -> "RedisRateCounterStore":
        """Build a store with short socket timeouts so an outage cannot stall requests."""
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    def increment(self, key: str, window_seconds: int) -> int:
        try:
            pipe = self._client.pipeline()
            pipe.incr(key)
            # Keep the key slightly past the window so late requests still count
            pipe.expire(key, window_seconds + 1)
            count, _ = pipe.execute()
        except RedisError as e:
            raise RateStoreUnavailable(str(e)) from e
        return int(count)

    def close(self) -> None:
        self._client.close()
