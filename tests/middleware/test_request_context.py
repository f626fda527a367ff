"""Tests for the request context middleware.

Verifies that every response gets:
- An X-Request-ID header (generated or echoed from the request)
- Request timing logged, without the body
"""

from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    """When no X-Request-ID header is sent, one is generated."""
    resp = client.get("/health")
    req_id = resp.headers.get("x-request-id")
    assert req_id is not None
    # Should be a valid UUID
    uuid.UUID(req_id)  # raises ValueError if invalid


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    """When the client sends X-Request-ID, the same value is echoed back."""
    custom_id = "my-custom-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers.get("x-request-id") == custom_id


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    """Even error responses (401) get an X-Request-ID header."""
    resp = client.get("/v1/wallet")  # No bearer token → 401
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_access_log_carries_request_id(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="eduwallet.middleware.request_context"):
        client.get("/health", headers={"X-Request-ID": "trace-me"})
    access = [r for r in caplog.records if r.name == "eduwallet.middleware.request_context"]
    assert access
    assert access[-1].request_id == "trace-me"
    assert access[-1].status_code == 200
