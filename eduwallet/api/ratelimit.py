"""Rate limiting for FastAPI routes.

Login is limited twice: per client IP (one client trying many
identifiers) and per identifier (many clients probing one holder).
The IP check runs as a route dependency; the identifier check needs the
request body, so the route calls enforce_rate_limit() itself.

X-RateLimit-* headers are attached to every checked response so clients
can throttle themselves before hitting a 429.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status

from eduwallet.core.metrics import RATE_LIMIT_HITS
from eduwallet.db.redis import redis_pool
from eduwallet.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    RedisRateLimiter,
)

logger = logging.getLogger(__name__)

if redis_pool is not None:
    _rate_limiter: RateLimiter = RedisRateLimiter(redis_pool)
else:
    _rate_limiter = InMemoryRateLimiter()

# 10 attempts burst, then one every 6 seconds.
LOGIN_LIMIT = RateLimitConfig(capacity=10, refill_rate=1 / 6)


async def enforce_rate_limit(
    request: Request, key: str, config: RateLimitConfig
) -> RateLimitResult:
    result = await _rate_limiter.check(key, config)
    request.state.rate_limit_headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
    }
    if not result.allowed:
        key_type = key.split(":", 1)[0]
        RATE_LIMIT_HITS.labels(key_type=key_type).inc()
        logger.warning("Rate limit exceeded key_type=%s", key_type)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded",
            headers={
                "Retry-After": str(int(result.retry_after) + 1),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    return result


def require_rate_limit(config: RateLimitConfig = LOGIN_LIMIT):
    """Dependency factory: limit a route per client IP."""

    async def _check(request: Request) -> None:
        client_ip = request.client.host if request.client else "unknown"
        await enforce_rate_limit(request, f"ip:{client_ip}", config)

    return _check
