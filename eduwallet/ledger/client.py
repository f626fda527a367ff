"""Ledger connection management.

Same shape as the Redis module: when LEDGER_URL is configured we talk to
a real JSON-RPC node; when it's unset (local dev, tests) everything runs
against the in-process ledger and no chain node is needed.

The chosen gateway is exposed as the module singleton `ledger_gateway`.
Services receive it as a parameter, so tests can hand them a fresh
InMemoryLedger(auto_settle=False) instead of monkeypatching this module.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from web3 import AsyncHTTPProvider, AsyncWeb3

from eduwallet.core.config import SETTINGS
from eduwallet.ledger.gateway import LedgerGateway
from eduwallet.ledger.memory import InMemoryLedger
from eduwallet.ledger.web3_gateway import Web3LedgerGateway

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Conditional web3 client (None when LEDGER_URL is not set)
# ---------------------------------------------------------------------------

if SETTINGS.uses_ledger_rpc:
    web3_client: AsyncWeb3 | None = AsyncWeb3(
        AsyncHTTPProvider(
            SETTINGS.ledger_url,
            request_kwargs={"timeout": 30},
        )
    )
    ledger_gateway: LedgerGateway = Web3LedgerGateway(
        web3_client,
        SETTINGS.register_address,  # type: ignore[arg-type]  # validated by load_settings
        timeout_seconds=SETTINGS.ledger_timeout_seconds,
    )
else:
    web3_client = None
    ledger_gateway = InMemoryLedger()


@asynccontextmanager
async def lifespan_ledger():
    """Startup/shutdown hook for the ledger connection.

    A node that is down at startup is logged, not fatal: /ready reports
    it and submissions resolve Failed("unavailable: ...") until it's back.
    """
    if web3_client is None:
        logger.info("No LEDGER_URL configured, using the in-process ledger")
        yield
        return

    try:
        chain_id = await web3_client.eth.chain_id
        logger.info("Ledger connected: %s chain_id=%d", SETTINGS.ledger_url, chain_id)
    except Exception:
        logger.exception("Ledger connection failed on startup")

    yield

    await web3_client.provider.disconnect()
    logger.info("Ledger provider closed")


async def ledger_ready() -> bool:
    if web3_client is None:
        return True
    try:
        return await web3_client.is_connected()
    except Exception:
        logger.warning("Ledger readiness probe failed", exc_info=True)
        return False
