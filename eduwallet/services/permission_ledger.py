"""The holder's view of who may read or write their record.

LIFECYCLE (per counterparty + capability key)
-----------------------------------------------

    Absent ──request──> Requested ──approve──> Granted ──revoke──> Absent
                            │
                            └──────deny──────> Absent

A counterparty issues the request (authority side).  The holder drives
everything else from here.  Granted never goes back to Requested; a
counterparty that was revoked has to ask again.

OPTIMISTIC, THEN RECONCILED
-----------------------------
approve/revoke/deny move the permission in the local view FIRST, then
submit the signed operation, then wait for the ledger:

    approve(P)                    view: requests -P, read/write +P'
      └─ submit(grant)            (P' is P granted)
           ├─ Confirmed           keep it, nothing else to do
           └─ Failed(reason)      roll back: -P', +P; raise LedgerSubmissionFailure

Every attempt is written to a TRANSITION LOG entry holding its pre-state
and post-state.  Rollback is computed from that entry alone ("remove
`after`, reinsert `before`"), never from whatever the sets happen to
contain when the failure arrives.  The entry is written before the
operation is submitted, so a reload that runs while submit() is still
suspended replays the move instead of losing it.  Only the newest
SETTLED_HISTORY settled entries are kept; pending ones always are.

PER-KEY SERIALIZATION
-----------------------
Two actions on the same key must not interleave: approve then revoke
racing in flight could see Confirmed(approve) land after Failed(revoke)
rolled back to a state that no longer exists.  Each key has an
asyncio.Lock held from the optimistic update until the outcome arrives.
Different keys proceed concurrently.  A key's lock is dropped once no
action holds or awaits it.

LATE OUTCOMES
--------------
A submission can't be recalled.  reconcile() accepts an outcome that
shows up after the call that issued it already returned (e.g. a receipt
seen after an adapter timeout).  A late Confirmed for a rolled-back
entry doesn't re-apply anything; it marks the view for reload so the
next load_all() picks up the ledger's truth.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from eduwallet.core.metrics import PERMISSION_ROLLBACKS
from eduwallet.ledger.gateway import (
    Confirmed,
    GrantPermission,
    Operation,
    Outcome,
    PermissionsQuery,
    RevokePermission,
    Role,
)
from eduwallet.models.permission import (
    Capability,
    Permission,
    PermissionKey,
    PermissionView,
    Phase,
)
from eduwallet.services.errors import (
    InvalidCapability,
    InvalidTransition,
    LedgerSubmissionFailure,
)

if TYPE_CHECKING:
    from eduwallet.services.identity_session import Session

logger = logging.getLogger(__name__)

# Settled log entries kept per session; pending ones are always kept.
SETTLED_HISTORY = 100


class TransitionKind(StrEnum):
    APPROVE = "approve"
    REVOKE = "revoke"
    DENY = "deny"


class TransitionStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


@dataclass(slots=True)
class Transition:
    """One attempted move.  `after` is None when the move removes the key."""

    operation_id: str
    kind: TransitionKind
    before: Permission
    after: Permission | None
    status: TransitionStatus = TransitionStatus.PENDING
    reason: str | None = None


class PermissionLedger:
    def __init__(self, session: Session) -> None:
        self._session = session
        # Insertion-ordered; keyed so each bucket holds at most one entry per key.
        self._requests: dict[PermissionKey, Permission] = {}
        self._read: dict[PermissionKey, Permission] = {}
        self._write: dict[PermissionKey, Permission] = {}
        self._needs_reload = True
        self._load_lock = asyncio.Lock()
        self._key_locks: dict[PermissionKey, asyncio.Lock] = {}
        self._lock_users: dict[PermissionKey, int] = {}
        self._log: dict[str, Transition] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def needs_reload(self) -> bool:
        return self._needs_reload

    def view(self) -> PermissionView:
        return PermissionView(
            requests=tuple(self._requests.values()),
            read=tuple(self._read.values()),
            write=tuple(self._write.values()),
        )

    def transitions(self) -> tuple[Transition, ...]:
        return tuple(self._log.values())

    async def load_all(self) -> PermissionView:
        """Fetch from the ledger once; later calls return the cached view
        until invalidate() is called."""
        async with self._load_lock:
            if not self._needs_reload:
                return self.view()

            session = self._session
            members: dict[Role, tuple[str, ...]] = {}
            for role in Role:
                members[role] = await session.gateway.read(
                    session.identity,
                    PermissionsQuery(session.record_address, role),
                )

            self._requests.clear()
            self._read.clear()
            self._write.clear()
            # Requests first so a grant for the same key supersedes them.
            for phase in (Phase.REQUESTED, Phase.GRANTED):
                for capability in Capability:
                    for counterparty in members[Role.of(capability, phase)]:
                        self._place(Permission(counterparty, capability, phase))

            # In-flight moves stay visible across a reload.
            for transition in self._log.values():
                if transition.status is TransitionStatus.PENDING:
                    self._apply(transition.before, transition.after)

            self._needs_reload = False
            view = self.view()
            logger.info(
                "Loaded permissions requests=%d read=%d write=%d",
                len(view.requests),
                len(view.read),
                len(view.write),
                extra={"holder": session.holder_address},
            )
            return view

    def invalidate(self) -> None:
        self._needs_reload = True

    async def refresh(self) -> PermissionView:
        self.invalidate()
        return await self.load_all()

    # ------------------------------------------------------------------
    # Holder actions
    # ------------------------------------------------------------------

    async def approve(self, permission: Permission) -> Permission:
        """Requested -> Granted.  Returns the granted permission."""
        self._check_capability(permission)
        if permission.phase is not Phase.REQUESTED:
            raise InvalidTransition(f"can only approve a request, got {permission}")
        async with self._holding(permission.key):
            self._require_present(permission)
            granted = permission.granted()
            await self._transition(
                TransitionKind.APPROVE,
                before=permission,
                after=granted,
                operation=GrantPermission(
                    self._session.record_address,
                    permission.counterparty,
                    permission.capability,
                ),
            )
            return granted

    async def revoke(self, permission: Permission) -> None:
        """Granted -> Absent."""
        self._check_capability(permission)
        if permission.phase is not Phase.GRANTED:
            raise InvalidTransition(f"can only revoke a grant, got {permission}")
        async with self._holding(permission.key):
            self._require_present(permission)
            await self._transition(
                TransitionKind.REVOKE,
                before=permission,
                after=None,
                operation=RevokePermission(
                    self._session.record_address, permission.counterparty
                ),
            )

    async def deny(self, permission: Permission) -> None:
        """Requested -> Absent.  On the ledger this is the same revoke
        operation, which clears any role the counterparty holds."""
        self._check_capability(permission)
        if permission.phase is not Phase.REQUESTED:
            raise InvalidTransition(f"can only deny a request, got {permission}")
        async with self._holding(permission.key):
            self._require_present(permission)
            await self._transition(
                TransitionKind.DENY,
                before=permission,
                after=None,
                operation=RevokePermission(
                    self._session.record_address, permission.counterparty
                ),
            )

    def revert(self, permission: Permission) -> None:
        """Put `permission` back in the bucket its phase belongs to.

        Reinsert, never toggle: calling it when the permission is already
        there leaves exactly one copy.  Any other entry for the same key
        (the optimistic post-state) is displaced.
        """
        self._place(permission)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, operation_id: str, outcome: Outcome) -> bool:
        """Apply an outcome to its log entry.  Returns True if the view changed
        state (confirmed or rolled back), False for no-ops."""
        transition = self._log.get(operation_id)
        if transition is None:
            logger.debug("Ignoring outcome for unknown operation=%s", operation_id)
            return False

        if transition.status is TransitionStatus.PENDING:
            if isinstance(outcome, Confirmed):
                transition.status = TransitionStatus.CONFIRMED
                self._after_confirm(transition)
            else:
                self._rollback(transition, outcome.reason)
            self._prune_log()
            return True

        if (
            transition.status is TransitionStatus.ROLLED_BACK
            and isinstance(outcome, Confirmed)
        ):
            # The ledger applied it after all; our rolled-back view is stale.
            self._needs_reload = True
            logger.info(
                "Late confirmation for rolled-back %s, view marked for reload",
                transition.kind,
                extra={"operation_id": operation_id},
            )
        return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        kind: TransitionKind,
        *,
        before: Permission,
        after: Permission | None,
        operation: Operation,
    ) -> None:
        session = self._session
        identity = session.identity

        # Logged before submitting so a load_all() that runs while submit is
        # suspended replays the move.  Re-keyed once the ledger assigns an id.
        transition = Transition(f"local-{uuid.uuid4()}", kind, before, after)
        self._log[transition.operation_id] = transition
        self._apply(before, after)
        try:
            pending = await session.gateway.submit(identity, operation)
        except BaseException:
            # Nothing reached the ledger, so there is nothing to reconcile.
            del self._log[transition.operation_id]
            self.revert(before)
            raise

        del self._log[transition.operation_id]
        transition.operation_id = pending.operation_id
        self._log[pending.operation_id] = transition
        # Reconciles even if this caller is cancelled while waiting.
        pending.add_done_callback(lambda o: self.reconcile(o.operation_id, o))
        logger.info(
            "Submitted %s",
            kind,
            extra={
                "holder": session.holder_address,
                "counterparty": before.counterparty,
                "capability": str(before.capability),
                "operation_id": pending.operation_id,
            },
        )

        outcome = await pending
        self.reconcile(pending.operation_id, outcome)
        if transition.status is TransitionStatus.ROLLED_BACK:
            raise LedgerSubmissionFailure(
                pending.operation_id, transition.reason or "failed"
            )

    def _after_confirm(self, transition: Transition) -> None:
        # The ledger's revoke clears every role the counterparty holds, so
        # other entries for it are now stale.
        if transition.after is None and self._has_other_entries(transition.before):
            self._needs_reload = True

    def _rollback(self, transition: Transition, reason: str) -> None:
        if transition.after is not None:
            self._discard(transition.after)
        self.revert(transition.before)
        transition.status = TransitionStatus.ROLLED_BACK
        transition.reason = reason
        PERMISSION_ROLLBACKS.labels(transition=transition.kind).inc()
        logger.warning(
            "Rolled back %s: %s",
            transition.kind,
            reason,
            extra={
                "holder": self._session.holder_address,
                "counterparty": transition.before.counterparty,
                "capability": str(transition.before.capability),
                "operation_id": transition.operation_id,
            },
        )

    def _prune_log(self) -> None:
        # Oldest first; pending entries are never dropped.
        settled = [
            operation_id
            for operation_id, transition in self._log.items()
            if transition.status is not TransitionStatus.PENDING
        ]
        for operation_id in settled[: max(0, len(settled) - SETTLED_HISTORY)]:
            del self._log[operation_id]

    def _apply(self, before: Permission, after: Permission | None) -> None:
        self._discard(before)
        if after is not None:
            self._place(after)

    def _bucket(self, permission: Permission) -> dict[PermissionKey, Permission]:
        if permission.phase is Phase.REQUESTED:
            return self._requests
        if permission.capability is Capability.READ:
            return self._read
        return self._write

    def _place(self, permission: Permission) -> None:
        # One live entry per key across all buckets.
        for bucket in (self._requests, self._read, self._write):
            bucket.pop(permission.key, None)
        self._bucket(permission)[permission.key] = permission

    def _discard(self, permission: Permission) -> None:
        bucket = self._bucket(permission)
        if bucket.get(permission.key) == permission:
            del bucket[permission.key]

    def _has_other_entries(self, permission: Permission) -> bool:
        return any(
            p.counterparty == permission.counterparty and p.key != permission.key
            for p in self.view().all()
        )

    def _require_present(self, permission: Permission) -> None:
        if self._bucket(permission).get(permission.key) != permission:
            raise InvalidTransition(f"{permission} is not in the current view")

    @asynccontextmanager
    async def _holding(self, key: PermissionKey) -> AsyncIterator[None]:
        """Hold the lock for `key`, dropping it once nobody holds or awaits it."""
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._key_locks[key]

    @staticmethod
    def _check_capability(permission: Permission) -> None:
        if not isinstance(permission.capability, Capability):
            raise InvalidCapability(
                f"unknown capability {permission.capability!r}"
            )
