from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import eduwallet` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from eduwallet.api.dependencies import get_gateway  # noqa: E402
from eduwallet.api.ratelimit import _rate_limiter  # noqa: E402
from eduwallet.ledger.memory import InMemoryLedger  # noqa: E402
from eduwallet.main import app  # noqa: E402
from eduwallet.models.identity import SigningIdentity  # noqa: E402
from eduwallet.models.permission import Capability  # noqa: E402
from eduwallet.models.record import CourseInfo, Profile  # noqa: E402
from eduwallet.services import authority_service  # noqa: E402
from eduwallet.services.cache import cache_service  # noqa: E402
from eduwallet.services.key_derivation import derive  # noqa: E402
from eduwallet.services.session_store import session_store  # noqa: E402


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear rate limit buckets between tests so limits don't bleed."""
    if hasattr(_rate_limiter, "_buckets"):
        _rate_limiter._buckets.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_sessions() -> None:
    session_store.clear()


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def client(ledger: InMemoryLedger):
    app.dependency_overrides[get_gateway] = lambda: ledger
    yield TestClient(app)
    app.dependency_overrides.pop(get_gateway, None)


# ---------------------------------------------------------------------------
# Ledger seeding helpers
# ---------------------------------------------------------------------------

# Derivation runs the real 100,000-round PBKDF2, so derive each test
# authority once per session.
_AUTHORITIES: dict[str, SigningIdentity] = {}


def authority(name: str) -> SigningIdentity:
    if name not in _AUTHORITIES:
        _AUTHORITIES[name] = derive(f"{name}-secret", name)
    return _AUTHORITIES[name]


HOLDER_PROFILE = Profile("Ada", "Lovelace", date(2001, 12, 10), "London", "UK")


@dataclass(frozen=True)
class World:
    university: SigningIdentity
    requester: SigningIdentity
    credentials: authority_service.HolderCredentials


async def seed_world(
    ledger: InMemoryLedger, *, request: Capability | None = Capability.READ
) -> World:
    """One registering university with three results, plus a second
    university that (optionally) has requested a capability."""
    university = authority("unipd")
    requester = authority("tudelft")
    await authority_service.subscribe(ledger, university, "Università di Padova", "IT", "UNIPD")
    await authority_service.subscribe(ledger, requester, "TU Delft", "NL", "TUD")
    credentials = await authority_service.register_holder(ledger, university, HOLDER_PROFILE)
    await authority_service.enroll(
        ledger,
        university,
        credentials.record_address,
        [
            CourseInfo("A", "Algorithms", "CS", Decimal("9")),
            CourseInfo("B", "Linear Algebra", "Math", Decimal("7.5")),
            CourseInfo("C", "Compilers", "CS", Decimal("6")),
        ],
    )
    if request is not None:
        await authority_service.request_permission(
            ledger, requester, credentials.record_address, request
        )
    return World(university, requester, credentials)


@pytest.fixture
def world(ledger: InMemoryLedger) -> World:
    return asyncio.run(seed_world(ledger))


def login(client: TestClient, credentials: authority_service.HolderCredentials) -> dict[str, str]:
    """Open a wallet session over HTTP and return the bearer auth header."""
    resp = client.post(
        "/v1/session",
        json={"identifier": credentials.identifier, "secret": credentials.secret},
    )
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}
