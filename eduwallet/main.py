from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from eduwallet.api.health import router as health_router
from eduwallet.api.metrics_endpoint import router as metrics_router
from eduwallet.api.permissions import router as permissions_router
from eduwallet.api.session import router as session_router
from eduwallet.api.wallet import router as wallet_router
from eduwallet.core.config import SETTINGS
from eduwallet.core.logging import setup_logging
from eduwallet.db.redis import lifespan_redis
from eduwallet.ledger.client import lifespan_ledger
from eduwallet.middleware.metrics import MetricsMiddleware
from eduwallet.middleware.request_context import RequestContextMiddleware
from eduwallet.services.session_store import session_store

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one fails.
    async with lifespan_ledger():
        async with lifespan_redis():
            yield
    # Drop every in-memory identity on shutdown.
    session_store.clear()


app = FastAPI(
    title="eduwallet",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext (outermost) -> Metrics -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(session_router)
app.include_router(wallet_router)
app.include_router(permissions_router)

logger.info(
    "eduwallet started  env=%s log_level=%s port=%d ledger=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "rpc" if SETTINGS.uses_ledger_rpc else "in_memory",
)
