"""In-process ledger for tests and local dev (no chain node needed).

It enforces the same rules the on-chain contracts do (who may enroll,
who may grant, one live permission per counterparty and capability) so
that code exercised against it behaves the same against a real node.

SETTLEMENT
-----------
A submission is never applied inside submit().  It is validated and
applied when it SETTLES, which models a block being mined:

  auto_settle=True  (default)
    Settles on the next event-loop iteration, i.e. after the caller has
    had a chance to apply its optimistic update.  Good for demos and
    most tests.

  auto_settle=False
    Operations wait in flight until the test calls settle(), settle_all()
    or fail().  This is how tests observe the optimistic window and
    drive Confirmed/Failed interleavings deterministically.

Because validation happens at settlement, two conflicting submissions
behave as on-chain: the first one to settle wins and the other fails.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

from eth_utils import to_checksum_address

from eduwallet.core.metrics import LEDGER_SUBMISSIONS
from eduwallet.ledger.gateway import (
    CounterpartyQuery,
    Enroll,
    Evaluate,
    GrantPermission,
    HolderRecordQuery,
    Operation,
    PendingOperation,
    PermissionsQuery,
    ProfileQuery,
    Query,
    RecordAddressQuery,
    RegisterHolder,
    RequestPermission,
    RevokePermission,
    Role,
    SubscribeAuthority,
    VerifyPermissionQuery,
    new_operation_id,
)
from eduwallet.models.counterparty import Counterparty
from eduwallet.models.identity import SigningIdentity
from eduwallet.models.permission import Capability, Phase
from eduwallet.models.record import AcademicResult, HolderRecord, Profile
from eduwallet.services.errors import LedgerReadError, RecordNotFound

logger = logging.getLogger(__name__)


class _Rejected(Exception):
    """A contract rule refused the operation (becomes Failed(reason))."""


@dataclass(slots=True)
class _LedgerResult:
    # Stored in ledger encoding: "" / 0 mean "not set", credits in hundredths.
    code: str
    name: str
    university: str
    degree_course: str
    ects: int
    grade: str = ""
    date: int = 0
    certificate_hash: str = ""

    def to_result(self) -> AcademicResult:
        return AcademicResult.from_ledger(
            name=self.name,
            code=self.code,
            university=self.university,
            degree_course=self.degree_course,
            grade=self.grade,
            date=self.date,
            ects=self.ects,
            certificate_hash=self.certificate_hash,
        )


@dataclass(slots=True)
class _HolderAccount:
    owner: str
    profile: Profile
    results: list[_LedgerResult] = field(default_factory=list)
    # Ordered lists: the contract returns role members in insertion order.
    roles: dict[Role, list[str]] = field(
        default_factory=lambda: {role: [] for role in Role}
    )

    def roles_of(self, address: str) -> list[Role]:
        return [role for role, members in self.roles.items() if address in members]


class InMemoryLedger:
    """Dict-backed ledger authority.  One instance per simulated chain."""

    def __init__(self, *, auto_settle: bool = True) -> None:
        self.auto_settle = auto_settle
        self._authorities: dict[str, Counterparty] = {}
        self._holders: dict[str, str] = {}  # holder address -> record address
        self._records: dict[str, _HolderAccount] = {}
        self._inflight: dict[str, tuple[SigningIdentity, PendingOperation]] = {}
        self._injected_failures: list[tuple[str | None, str]] = []

    # ------------------------------------------------------------------
    # LedgerGateway
    # ------------------------------------------------------------------

    async def submit(
        self, signer: SigningIdentity, operation: Operation
    ) -> PendingOperation:
        pending = PendingOperation(new_operation_id(), operation)
        self._inflight[pending.operation_id] = (signer, pending)
        logger.debug(
            "Submitted %s from=%s",
            pending,
            signer.address,
            extra={"operation_id": pending.operation_id},
        )
        if self.auto_settle:
            asyncio.get_running_loop().call_soon(self.settle, pending.operation_id)
        return pending

    async def read(self, reader: SigningIdentity, query: Query) -> Any:
        match query:
            case RecordAddressQuery(holder_address=holder):
                record_address = self._holders.get(holder)
                if record_address is None:
                    raise RecordNotFound("StudentNotPresent")
                return record_address
            case HolderRecordQuery(record_address=address):
                account = self._readable(reader, address)
                return HolderRecord(
                    profile=account.profile,
                    results=tuple(r.to_result() for r in account.results),
                )
            case ProfileQuery(record_address=address):
                return self._readable(reader, address).profile
            case PermissionsQuery(record_address=address, role=role):
                account = self._account(address)
                if reader.address != account.owner:
                    raise LedgerReadError("only the holder can list permissions")
                return tuple(account.roles[role])
            case CounterpartyQuery(address=address):
                counterparty = self._authorities.get(address)
                if counterparty is None:
                    raise RecordNotFound("UniversityNotPresent")
                return counterparty
            case VerifyPermissionQuery(record_address=address):
                held = self._account(address).roles_of(reader.address)
                if Role.WRITE in held:
                    return Capability.WRITE
                if Role.READ in held:
                    return Capability.READ
                return None
        raise LedgerReadError(f"unsupported query {query!r}")

    # ------------------------------------------------------------------
    # Settlement controls
    # ------------------------------------------------------------------

    def inflight(self) -> list[PendingOperation]:
        return [pending for _, pending in self._inflight.values()]

    def fail_next(self, reason: str, *, kind: str | None = None) -> None:
        """Make the next settling operation (optionally of one kind) fail."""
        self._injected_failures.append((kind, reason))

    def settle(self, operation_id: str) -> bool:
        entry = self._inflight.pop(operation_id, None)
        if entry is None:
            return False
        signer, pending = entry
        reason = self._take_injected_failure(pending.kind)
        if reason is None:
            try:
                self._apply(signer, pending.operation)
            except _Rejected as e:
                reason = str(e)
        LEDGER_SUBMISSIONS.labels(
            operation=pending.kind,
            outcome="confirmed" if reason is None else "failed",
        ).inc()
        if reason is None:
            pending.confirm()
        else:
            logger.info(
                "Ledger rejected %s: %s",
                pending,
                reason,
                extra={"operation_id": pending.operation_id},
            )
            pending.fail(reason)
        return True

    def settle_all(self) -> int:
        settled = 0
        for operation_id in list(self._inflight):
            settled += self.settle(operation_id)
        return settled

    def fail(self, operation_id: str, reason: str = "reverted") -> bool:
        """Fail an in-flight operation without applying it."""
        entry = self._inflight.pop(operation_id, None)
        if entry is None:
            return False
        return entry[1].fail(reason)

    # ------------------------------------------------------------------
    # Contract rules
    # ------------------------------------------------------------------

    def _take_injected_failure(self, kind: str) -> str | None:
        for i, (wanted, reason) in enumerate(self._injected_failures):
            if wanted is None or wanted == kind:
                del self._injected_failures[i]
                return reason
        return None

    def _apply(self, signer: SigningIdentity, operation: Operation) -> None:
        sender = signer.address
        match operation:
            case SubscribeAuthority(name=name, country=country, short_name=short):
                if sender in self._authorities:
                    raise _Rejected("UniversityAlreadyPresent")
                self._authorities[sender] = Counterparty(sender, name, country, short)
            case RegisterHolder(holder_address=holder, profile=profile):
                self._require_authority(sender)
                if holder in self._holders:
                    raise _Rejected("StudentAlreadyPresent")
                record_address = _record_address_for(holder)
                account = _HolderAccount(owner=holder, profile=profile)
                # The registering authority can write to the record it created.
                account.roles[Role.WRITE].append(sender)
                self._holders[holder] = record_address
                self._records[record_address] = account
            case Enroll(record_address=address, code=code) as enroll:
                account = self._writable(sender, address)
                if self._find_result(account, sender, code) is not None:
                    raise _Rejected("CourseAlreadyPresent")
                account.results.append(
                    _LedgerResult(
                        code=code,
                        name=enroll.name,
                        university=sender,
                        degree_course=enroll.program,
                        ects=enroll.credits,
                    )
                )
            case Evaluate(record_address=address, code=code) as evaluation:
                account = self._writable(sender, address)
                result = self._find_result(account, sender, code)
                if result is None:
                    raise _Rejected("CourseNotPresent")
                result.grade = evaluation.grade
                result.date = evaluation.evaluated_at
                result.certificate_hash = evaluation.certificate
            case RequestPermission(record_address=address, capability=capability):
                self._require_authority(sender)
                account = self._account_or_reject(address)
                requested = Role.of(capability, Phase.REQUESTED)
                granted = Role.of(capability, Phase.GRANTED)
                if sender in account.roles[requested] or sender in account.roles[granted]:
                    raise _Rejected("PermissionAlreadyPresent")
                account.roles[requested].append(sender)
            case GrantPermission(
                record_address=address, counterparty=counterparty, capability=capability
            ):
                account = self._owned(sender, address)
                requested = Role.of(capability, Phase.REQUESTED)
                granted = Role.of(capability, Phase.GRANTED)
                if counterparty not in account.roles[requested]:
                    raise _Rejected("PermissionNotRequested")
                account.roles[requested].remove(counterparty)
                account.roles[granted].append(counterparty)
            case RevokePermission(record_address=address, counterparty=counterparty):
                account = self._owned(sender, address)
                held = account.roles_of(counterparty)
                if not held:
                    raise _Rejected("PermissionNotPresent")
                for role in held:
                    account.roles[role].remove(counterparty)
            case _:
                raise _Rejected(f"unsupported operation {operation!r}")

    def _require_authority(self, sender: str) -> None:
        if sender not in self._authorities:
            raise _Rejected("UniversityNotPresent")

    def _account(self, record_address: str) -> _HolderAccount:
        account = self._records.get(record_address)
        if account is None:
            raise RecordNotFound("StudentNotPresent")
        return account

    def _account_or_reject(self, record_address: str) -> _HolderAccount:
        account = self._records.get(record_address)
        if account is None:
            raise _Rejected("StudentNotPresent")
        return account

    def _readable(self, reader: SigningIdentity, record_address: str) -> _HolderAccount:
        account = self._account(record_address)
        if reader.address == account.owner:
            return account
        held = account.roles_of(reader.address)
        if Role.READ in held or Role.WRITE in held:
            return account
        raise LedgerReadError("reader holds no read capability on this record")

    def _writable(self, sender: str, record_address: str) -> _HolderAccount:
        account = self._account_or_reject(record_address)
        if sender not in account.roles[Role.WRITE]:
            raise _Rejected("PermissionDenied")
        return account

    def _owned(self, sender: str, record_address: str) -> _HolderAccount:
        account = self._account_or_reject(record_address)
        if sender != account.owner:
            raise _Rejected("PermissionDenied")
        return account

    @staticmethod
    def _find_result(
        account: _HolderAccount, university: str, code: str
    ) -> _LedgerResult | None:
        for result in account.results:
            if result.university == university and result.code == code:
                return result
        return None


def _record_address_for(holder_address: str) -> str:
    digest = hashlib.sha256(f"record:{holder_address}".encode()).hexdigest()
    return to_checksum_address("0x" + digest[:40])
