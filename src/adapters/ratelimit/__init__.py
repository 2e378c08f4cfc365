"""Rate limit counter stores - In-process and Redis implementations."""

from .memory import InMemoryRateCounterStore
from .redis_store import RedisRateCounterStore

__all__ = ["InMemoryRateCounterStore", "RedisRateCounterStore"]
