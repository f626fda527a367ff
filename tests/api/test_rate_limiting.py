"""Login rate limiting.

Login is limited per client IP and per identifier, both with a burst of
10 attempts.  A 429 must carry Retry-After.
"""

from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from eduwallet.api import ratelimit
from eduwallet.services.rate_limiter import InMemoryRateLimiter, RateLimitConfig


def _attempt(client: TestClient, identifier: str = "guess-me") -> int:
    resp = client.post("/v1/session", json={"identifier": identifier, "secret": "wrong"})
    return resp.status_code


def test_login_has_strict_rate_limit(client: TestClient) -> None:
    statuses = [_attempt(client) for _ in range(12)]
    assert statuses[:10] == [401] * 10
    assert 429 in statuses, "Login should hit rate limit before 12 attempts"


def test_429_includes_retry_after_header(client: TestClient) -> None:
    last = None
    for _ in range(11):
        last = client.post("/v1/session", json={"identifier": "x", "secret": "y"})
    assert last is not None
    assert last.status_code == 429
    assert int(last.headers["retry-after"]) > 0
    assert last.headers["x-ratelimit-remaining"] == "0"


def test_checked_responses_carry_rate_limit_headers(client: TestClient) -> None:
    resp = client.post("/v1/session", json={"identifier": "x", "secret": "y"})
    assert resp.status_code == 401
    assert resp.headers["x-ratelimit-limit"] == "10"
    assert int(resp.headers["x-ratelimit-remaining"]) < 10


def test_identifier_bucket_is_shared_across_ips(client: TestClient) -> None:
    # Emptying the IP bucket each time simulates attempts from many clients.
    statuses = []
    for _ in range(11):
        ratelimit._rate_limiter._buckets.pop("ip:testclient", None)  # type: ignore[union-attr]
        statuses.append(_attempt(client, identifier="victim"))
    assert statuses[-1] == 429


def test_in_memory_bucket_refills() -> None:
    limiter = InMemoryRateLimiter()
    config = RateLimitConfig(capacity=1, refill_rate=1000.0)

    async def scenario() -> tuple[bool, bool]:
        first = await limiter.check("k", config)
        await asyncio.sleep(0.01)
        second = await limiter.check("k", config)
        return first.allowed, second.allowed

    assert asyncio.run(scenario()) == (True, True)
