"""Demo: a university registers a holder, asks for read access, and the
holder approves then revokes it through the HTTP API.

Runs entirely against the in-process ledger (leave LEDGER_URL unset):
    python scripts/demo_wallet_flow.py
"""

from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal

from fastapi.testclient import TestClient

from eduwallet.ledger.client import ledger_gateway
from eduwallet.main import app
from eduwallet.models.permission import Capability
from eduwallet.models.record import CourseInfo, Evaluation, Profile
from eduwallet.services import authority_service
from eduwallet.services.blob_store import blob_store
from eduwallet.services.key_derivation import derive


async def seed() -> authority_service.HolderCredentials:
    university = derive("demo-university-secret", "demo-university")
    await authority_service.subscribe(
        ledger_gateway, university, "Università di Padova", "IT", "UNIPD"
    )
    credentials = await authority_service.register_holder(
        ledger_gateway,
        university,
        Profile("Ada", "Lovelace", date(2001, 12, 10), "London", "UK"),
    )
    await authority_service.enroll(
        ledger_gateway,
        university,
        credentials.record_address,
        [
            CourseInfo("INF-01", "Algorithms", "Computer Science", Decimal("9")),
            CourseInfo("MAT-02", "Linear Algebra", "Mathematics", Decimal("7.5")),
            CourseInfo("INF-03", "Compilers", "Computer Science", Decimal("6")),
        ],
    )
    await authority_service.evaluate(
        ledger_gateway,
        university,
        credentials.record_address,
        [Evaluation("INF-01", "30L", date(2024, 2, 1), b"%PDF-1.7 demo certificate")],
        blob_store,
    )

    other = derive("demo-other-secret", "demo-other-university")
    await authority_service.subscribe(ledger_gateway, other, "TU Delft", "NL", "TUD")
    await authority_service.request_permission(
        ledger_gateway, other, credentials.record_address, Capability.READ
    )
    return credentials


def main() -> None:
    credentials = asyncio.run(seed())
    print(f"Registered holder {credentials.holder_address}")
    print(f"  identifier={credentials.identifier}  (secret handed to the holder once)")

    client = TestClient(app)

    r = client.post("/v1/session", json={"identifier": credentials.identifier, "secret": "wrong"})
    print(f"1. POST /v1/session (bad secret) → {r.status_code}  {r.json()['detail']}")

    r = client.post(
        "/v1/session",
        json={"identifier": credentials.identifier, "secret": credentials.secret},
    )
    token = r.json()["token"]
    auth = {"Authorization": f"Bearer {token}"}
    print(f"2. POST /v1/session              → {r.status_code}")

    r = client.get("/v1/wallet", headers=auth)
    print(f"3. GET  /v1/wallet               → {r.status_code}  results={len(r.json()['results'])}")

    r = client.get("/v1/wallet/counterparties", headers=auth)
    university = r.json()[0]
    print(f"4. GET  counterparties           → {[c['short_name'] for c in r.json()]}")

    r = client.get(f"/v1/wallet/counterparties/{university['address']}/programs", headers=auth)
    print(f"5. GET  programs                 → {[p['program'] for p in r.json()]}")

    r = client.get("/v1/permissions", headers=auth)
    request = r.json()["requests"][0]
    print(f"6. GET  /v1/permissions          → requests={len(r.json()['requests'])}")

    body = {"counterparty": request["counterparty"], "capability": request["capability"]}
    r = client.post("/v1/permissions/approve", json=body, headers=auth)
    print(
        f"7. POST approve                  → {r.status_code}  "
        f"requests={len(r.json()['requests'])} read={len(r.json()['read'])}"
    )

    r = client.post("/v1/permissions/revoke", json=body, headers=auth)
    print(f"8. POST revoke                   → {r.status_code}  read={len(r.json()['read'])}")

    r = client.delete("/v1/session", headers=auth)
    print(f"9. DELETE /v1/session            → {r.status_code}")

    r = client.get("/v1/wallet", headers=auth)
    print(f"10. GET /v1/wallet (closed)      → {r.status_code}")


if __name__ == "__main__":
    main()
