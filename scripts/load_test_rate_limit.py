#!/usr/bin/env python3
"""Load test script: shows the login rate limit at work.

RUN:  python scripts/load_test_rate_limit.py [identifier]

Sends TOTAL_ATTEMPTS wrong-secret logins in rapid succession and prints
how many were answered 401 (the server paid for a key derivation) vs.
429 (throttled before deriving anything).

Prerequisites:
  - The API must be running: uvicorn eduwallet.main:app --port 8000
  - No holder needs to exist; every attempt is meant to fail.

This is a demonstration, not a load testing tool.  For real load
testing, use locust, k6 or wrk.
"""

from __future__ import annotations

import sys
import time

import httpx

BASE_URL = "http://localhost:8000"
TOTAL_ATTEMPTS = 30


def main() -> None:
    identifier = sys.argv[1] if len(sys.argv) > 1 else "load-test-holder"

    print("Login Rate Limit Load Test")
    print("=" * 50)
    print(f"Target: {BASE_URL}/v1/session  identifier={identifier}")
    print(f"Total attempts: {TOTAL_ATTEMPTS}")
    print()

    results: dict[int, int] = {}
    retry_after: str | None = None
    start = time.monotonic()

    with httpx.Client(base_url=BASE_URL, timeout=10) as client:
        for i in range(TOTAL_ATTEMPTS):
            resp = client.post(
                "/v1/session",
                json={"identifier": identifier, "secret": f"guess-{i}"},
            )
            results[resp.status_code] = results.get(resp.status_code, 0) + 1
            if resp.status_code == 429:
                retry_after = resp.headers.get("retry-after")

            if (i + 1) % 10 == 0:
                print(f"  Sent {i + 1}/{TOTAL_ATTEMPTS} attempts...")

    elapsed = time.monotonic() - start

    print()
    print(f"Results after {TOTAL_ATTEMPTS} attempts ({elapsed:.2f}s):")
    print("─" * 40)

    rejected = results.get(401, 0)
    throttled = results.get(429, 0)
    other = sum(v for k, v in results.items() if k not in (401, 429))

    print(f"  Rejected (401): {rejected:>4}")
    print(f"  Throttled(429): {throttled:>4}")
    if other:
        print(f"  Other:          {other:>4}")
    if retry_after is not None:
        print(f"  Last Retry-After: {retry_after}s")

    print()
    print("Login bucket capacity: 10, refill: 1 token / 6 seconds")
    print()

    if throttled > 0:
        print("Rate limiting is working: the first ~10 attempts were")
        print("evaluated, the rest were throttled without deriving a key.")
    else:
        print("WARNING: No attempts were throttled.")
        print("Check that the login limiter is wired in.")


if __name__ == "__main__":
    main()
