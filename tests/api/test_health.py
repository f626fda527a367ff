from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import World, login


def test_health_reports_in_memory_backends(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["checks"] == {"redis": "not_configured", "ledger": "in_memory"}
    assert body["sessions"] == 0


def test_health_counts_open_sessions(client: TestClient, world: World) -> None:
    login(client, world.credentials)
    assert client.get("/health").json()["sessions"] == 1


def test_ready_with_in_memory_ledger(client: TestClient) -> None:
    assert client.get("/ready").status_code == 200
