from __future__ import annotations

from dataclasses import dataclass

UNKNOWN_NAME = "Unknown"


@dataclass(frozen=True, slots=True)
class Counterparty:
    """Public profile of an issuing authority (a university).

    Immutable once established on the ledger, so it is safe to cache
    indefinitely by address.
    """

    address: str
    name: str
    country: str
    short_name: str

    @staticmethod
    def unknown(address: str) -> Counterparty:
        return Counterparty(
            address=address, name=UNKNOWN_NAME, country="", short_name=UNKNOWN_NAME
        )

    @property
    def is_unknown(self) -> bool:
        return self.name == UNKNOWN_NAME and not self.country
