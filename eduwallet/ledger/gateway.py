"""The boundary between the wallet core and the external ledger.

WHAT THE CORE ASSUMES ABOUT THE LEDGER
----------------------------------------
Very little, on purpose:

  submit(signer, operation) -> PendingOperation
    Every mutation (register, enroll, evaluate, request, grant, revoke)
    goes through this one shape.  The returned handle resolves LATER to
    Confirmed or Failed(reason).  No latency is promised: a block may
    take 200ms on a dev chain or a minute on a congested network.

  read(reader, query) -> authoritative state
    Reads are authenticated by a signing identity because the contracts
    enforce who may see a record.

Timeouts belong to the adapter.  When an adapter gives up waiting it
resolves the handle as Failed("timeout"); the core never sees a third
"still pending" terminal state.

OPERATIONS AND QUERIES ARE TAGGED VARIANTS
--------------------------------------------
Each operation/query is its own frozen dataclass rather than a dict with
a "type" string.  An adapter dispatches on the class (match/case), so a
misspelt operation name is an AttributeError at import time, not a
silently ignored payload at runtime.

ROLES
------
The ledger keeps four role sets per record.  A Permission's
(capability, phase) maps onto exactly one of them:

                 Requested           Granted
    Read     READER_APPLICANT      READER_ROLE
    Write    WRITER_APPLICANT      WRITER_ROLE
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, ClassVar, Protocol, runtime_checkable

from eduwallet.models.identity import SigningIdentity
from eduwallet.models.permission import Capability, Phase
from eduwallet.models.record import Profile

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class Role(StrEnum):
    READ_REQUEST = "READER_APPLICANT"
    WRITE_REQUEST = "WRITER_APPLICANT"
    READ = "READER_ROLE"
    WRITE = "WRITER_ROLE"

    @staticmethod
    def of(capability: Capability, phase: Phase) -> Role:
        return _ROLE_TABLE[(capability, phase)]

    @property
    def capability(self) -> Capability:
        return _ROLE_PARTS[self][0]

    @property
    def phase(self) -> Phase:
        return _ROLE_PARTS[self][1]


_ROLE_TABLE: dict[tuple[Capability, Phase], Role] = {
    (Capability.READ, Phase.REQUESTED): Role.READ_REQUEST,
    (Capability.WRITE, Phase.REQUESTED): Role.WRITE_REQUEST,
    (Capability.READ, Phase.GRANTED): Role.READ,
    (Capability.WRITE, Phase.GRANTED): Role.WRITE,
}
_ROLE_PARTS: dict[Role, tuple[Capability, Phase]] = {
    role: parts for parts, role in _ROLE_TABLE.items()
}


# ---------------------------------------------------------------------------
# Operations (mutations)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SubscribeAuthority:
    kind: ClassVar[str] = "subscribe"

    name: str
    country: str
    short_name: str


@dataclass(frozen=True, slots=True)
class RegisterHolder:
    kind: ClassVar[str] = "register"

    holder_address: str
    profile: Profile


@dataclass(frozen=True, slots=True)
class Enroll:
    kind: ClassVar[str] = "enroll"

    record_address: str
    code: str
    name: str
    program: str
    credits: int  # hundredths


@dataclass(frozen=True, slots=True)
class Evaluate:
    kind: ClassVar[str] = "evaluate"

    record_address: str
    code: str
    grade: str
    evaluated_at: int  # Unix seconds
    certificate: str = ""  # blob store content identifier


@dataclass(frozen=True, slots=True)
class RequestPermission:
    kind: ClassVar[str] = "request"

    record_address: str
    capability: Capability


@dataclass(frozen=True, slots=True)
class GrantPermission:
    kind: ClassVar[str] = "grant"

    record_address: str
    counterparty: str
    capability: Capability


@dataclass(frozen=True, slots=True)
class RevokePermission:
    """Removes every role the counterparty holds on the record."""

    kind: ClassVar[str] = "revoke"

    record_address: str
    counterparty: str


Operation = (
    SubscribeAuthority
    | RegisterHolder
    | Enroll
    | Evaluate
    | RequestPermission
    | GrantPermission
    | RevokePermission
)


# ---------------------------------------------------------------------------
# Queries (authoritative reads)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RecordAddressQuery:
    """holder address -> record address (RecordNotFound when unbound)."""

    holder_address: str


@dataclass(frozen=True, slots=True)
class HolderRecordQuery:
    """record address -> HolderRecord (profile + results)."""

    record_address: str


@dataclass(frozen=True, slots=True)
class ProfileQuery:
    """record address -> Profile."""

    record_address: str


@dataclass(frozen=True, slots=True)
class PermissionsQuery:
    """record address + role -> tuple of counterparty addresses."""

    record_address: str
    role: Role


@dataclass(frozen=True, slots=True)
class CounterpartyQuery:
    """authority address -> Counterparty (RecordNotFound when unknown)."""

    address: str


@dataclass(frozen=True, slots=True)
class VerifyPermissionQuery:
    """record address -> the reader's granted Capability, or None."""

    record_address: str


Query = (
    RecordAddressQuery
    | HolderRecordQuery
    | ProfileQuery
    | PermissionsQuery
    | CounterpartyQuery
    | VerifyPermissionQuery
)


# ---------------------------------------------------------------------------
# Outcomes and the pending handle
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Confirmed:
    operation_id: str


@dataclass(frozen=True, slots=True)
class Failed:
    operation_id: str
    reason: str


Outcome = Confirmed | Failed


def new_operation_id() -> str:
    return str(uuid.uuid4())


class PendingOperation:
    """Handle for a submitted operation; resolves exactly once.

    Adapters call confirm()/fail().  The first resolution wins and later
    ones are ignored (returning False), which is how a timeout that
    already reported Failed stays final even if a receipt shows up.

    Awaiting the handle (or .outcome()) never cancels the underlying
    submission: a submitted transaction can't be recalled.
    """

    def __init__(self, operation_id: str, operation: Operation) -> None:
        self.operation_id = operation_id
        self.operation = operation
        self._future: asyncio.Future[Outcome] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def kind(self) -> str:
        return self.operation.kind

    def done(self) -> bool:
        return self._future.done()

    def resolve(self, outcome: Outcome) -> bool:
        if self._future.done():
            logger.debug(
                "Ignoring late outcome for operation=%s: %s",
                self.operation_id,
                outcome,
            )
            return False
        self._future.set_result(outcome)
        return True

    def confirm(self) -> bool:
        return self.resolve(Confirmed(self.operation_id))

    def fail(self, reason: str) -> bool:
        return self.resolve(Failed(self.operation_id, reason))

    def add_done_callback(self, callback: Callable[[Outcome], Any]) -> None:
        self._future.add_done_callback(lambda fut: callback(fut.result()))

    async def outcome(self) -> Outcome:
        # shield: a caller giving up on the wait must not cancel the handle
        # other observers (reconciliation, metrics) are still waiting on.
        return await asyncio.shield(self._future)

    def __await__(self):
        return self.outcome().__await__()

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"PendingOperation({self.kind} id={self.operation_id} {state})"


# ---------------------------------------------------------------------------
# The boundary Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class LedgerGateway(Protocol):
    async def submit(
        self, signer: SigningIdentity, operation: Operation
    ) -> PendingOperation:
        """Sign and send a mutation.  Returns as soon as it's in flight."""
        ...

    async def read(self, reader: SigningIdentity, query: Query) -> Any:
        """Authoritative read.  Raises RecordNotFound / LedgerReadError."""
        ...
