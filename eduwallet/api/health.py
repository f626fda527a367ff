"""Liveness and readiness probes.

/health answers "is the process alive" and reports each backing service;
it returns 200 even when degraded so an orchestrator doesn't restart a
process over a dependency it can't fix.  /ready answers "can this
instance serve wallets right now", which needs the ledger: without it
nobody can log in.
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from eduwallet.core.config import SETTINGS
from eduwallet.db.redis import redis_pool
from eduwallet.ledger.client import ledger_ready
from eduwallet.services.session_store import session_store

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    if SETTINGS.uses_ledger_rpc:
        if await ledger_ready():
            checks["ledger"] = "ok"
        else:
            checks["ledger"] = "degraded"
            overall = "degraded"
    else:
        checks["ledger"] = "in_memory"

    return {
        "status": overall,
        "checks": checks,
        "sessions": len(session_store),
    }


@router.get("/ready")
async def ready() -> Response:
    if not await ledger_ready():
        return Response(status_code=503)
    return Response(status_code=200)
