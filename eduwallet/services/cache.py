"""Read-through cache for public, immutable ledger data.

Used for counterparty profiles: an authority's name/country/short name
never change once it subscribes, so a cached profile can't go stale in
the usual sense.  The TTL is only there to bound memory in Redis.

Values are strings (JSON encoded by the caller) so the in-memory and
Redis backends behave identically.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from eduwallet.core.metrics import CACHE_OPERATIONS
from eduwallet.db.redis import redis_pool


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryCacheService:
    """Dict-backed cache, no TTL enforcement.  conftest clears it per test."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        value = self._store.get(key)
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        CACHE_OPERATIONS.labels(operation="set").inc()
        self._store[key] = value

    async def delete(self, key: str) -> None:
        CACHE_OPERATIONS.labels(operation="delete").inc()
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()


class RedisCacheService:
    """Redis-backed cache, shared across API instances."""

    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(f"{self._PREFIX}{key}")
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        CACHE_OPERATIONS.labels(operation="set").inc()
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        CACHE_OPERATIONS.labels(operation="delete").inc()
        await self._redis.delete(f"{self._PREFIX}{key}")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
