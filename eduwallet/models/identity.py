from __future__ import annotations

import hmac
from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount


@dataclass(frozen=True, slots=True, repr=False, eq=False)
class SigningIdentity:
    """A secp256k1 keypair that authorizes ledger operations.

    Lives only in memory for the lifetime of the session that derived
    it.  repr() shows the address and nothing else, so an identity that
    ends up in a log line or a traceback doesn't leak its key.
    """

    account: LocalAccount

    @staticmethod
    def from_private_key(private_key: bytes) -> SigningIdentity:
        return SigningIdentity(account=Account.from_key(private_key))

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def private_key(self) -> bytes:
        return bytes(self.account.key)

    def sign_transaction(self, transaction: dict):
        return self.account.sign_transaction(transaction)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SigningIdentity):
            return NotImplemented
        return hmac.compare_digest(self.private_key, other.private_key)

    def __hash__(self) -> int:
        return hash(self.address)

    def __repr__(self) -> str:
        return f"SigningIdentity(address={self.address})"
