"""Redis connection management.

When REDIS_URL is configured we create a real connection pool; when it's
None (local dev, tests) every consumer falls back to an in-memory
implementation and no Redis server is needed.

WHAT GOES IN REDIS HERE
------------------------
Only data that is public, immutable and safe to share across API
instances: counterparty profiles and rate-limit counters.  Sessions and
signing identities never leave process memory.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from eduwallet.core.config import SETTINGS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Conditional Redis client (None when REDIS_URL is not set)
# ---------------------------------------------------------------------------

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify the connection on startup, release the pool on shutdown."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, Redis features use in-memory fallbacks")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        # Keep serving: the cache and limiter degrade, the wallet doesn't.
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
