"""Error taxonomy shared by the wallet services.

Two families, handled very differently by callers:

  FATAL for the current operation (propagate immediately):
    DerivationError, InvalidCapability, InvalidTransition, SessionClosed
    These indicate bad input or a programming error.  Retrying the same
    call can't succeed.

  RECOVERABLE (caught where the optimistic update was issued):
    LedgerSubmissionFailure
    The local view is rolled back first, then the failure is re-raised
    so the holder sees a "try again" message against a consistent view.

AuthenticationError sits in between: fatal for the attempt, but safe to
retry with corrected credentials.  Its message is deliberately the same
whether the identifier or the secret was wrong.
"""

from __future__ import annotations


class WalletError(Exception):
    pass


class DerivationError(WalletError, ValueError):
    pass


class AuthenticationError(WalletError):
    MESSAGE = "Authentication failed. Check your credentials."

    def __init__(self) -> None:
        super().__init__(self.MESSAGE)


class LedgerSubmissionFailure(WalletError):
    def __init__(self, operation_id: str, reason: str) -> None:
        super().__init__(f"ledger rejected operation {operation_id}: {reason}")
        self.operation_id = operation_id
        self.reason = reason


class InvalidCapability(WalletError, ValueError):
    pass


class InvalidTransition(WalletError):
    pass


class UnknownCounterparty(WalletError, LookupError):
    def __init__(self, address: str) -> None:
        super().__init__(f"unknown counterparty {address}")
        self.address = address


class LedgerReadError(WalletError):
    pass


class RecordNotFound(LedgerReadError):
    pass


class SessionClosed(WalletError):
    pass


class BlobStoreError(WalletError):
    pass


class InvalidShare(WalletError, ValueError):
    pass
