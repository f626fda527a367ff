from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from eduwallet.ledger.gateway import CounterpartyQuery, LedgerGateway
from eduwallet.models.counterparty import Counterparty
from eduwallet.models.identity import SigningIdentity
from eduwallet.services.cache import CacheService
from eduwallet.services.errors import LedgerReadError, UnknownCounterparty

logger = logging.getLogger(__name__)

# Profiles are immutable on the ledger; the TTL only bounds cache memory.
PROFILE_TTL_SECONDS = 24 * 3600


def _cache_key(address: str) -> str:
    return f"counterparty:{address.lower()}"


class CounterpartyDirectory:
    """Resolves authority addresses to their public profiles (read-through)."""

    def __init__(self, gateway: LedgerGateway, cache: CacheService) -> None:
        self._gateway = gateway
        self._cache = cache

    async def resolve(self, reader: SigningIdentity, address: str) -> Counterparty:
        """Raises UnknownCounterparty when the ledger has no such authority."""
        cached = await self._cache.get(_cache_key(address))
        if cached is not None:
            return Counterparty(**json.loads(cached))

        try:
            counterparty = await self._gateway.read(reader, CounterpartyQuery(address))
        except LedgerReadError as e:
            raise UnknownCounterparty(address) from e

        await self._cache.set(
            _cache_key(address),
            json.dumps(
                {
                    "address": counterparty.address,
                    "name": counterparty.name,
                    "country": counterparty.country,
                    "short_name": counterparty.short_name,
                }
            ),
            PROFILE_TTL_SECONDS,
        )
        return counterparty

    async def resolve_many(
        self, reader: SigningIdentity, addresses: Iterable[str]
    ) -> dict[str, Counterparty]:
        """Resolve each distinct address; unresolvable ones map to Unknown."""
        resolved: dict[str, Counterparty] = {}
        for address in addresses:
            if address in resolved:
                continue
            try:
                resolved[address] = await self.resolve(reader, address)
            except UnknownCounterparty:
                logger.warning(
                    "Could not resolve counterparty %s",
                    address,
                    extra={"counterparty": address},
                )
                resolved[address] = Counterparty.unknown(address)
        return resolved

    async def display_name(self, reader: SigningIdentity, address: str) -> str:
        resolved = await self.resolve_many(reader, [address])
        return resolved[address].name
