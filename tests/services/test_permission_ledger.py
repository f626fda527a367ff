"""PermissionLedger: optimistic transitions, rollback and reconciliation.

Most tests seed the in-memory ledger with auto-settlement on, then turn
it off so each submission waits until the test settles or fails it.
That makes the optimistic window observable.
"""

from __future__ import annotations

import asyncio

import pytest

from eduwallet.ledger.gateway import Confirmed, Failed, RegisterHolder
from eduwallet.ledger.memory import InMemoryLedger
from eduwallet.models.permission import Capability, Permission, Phase
from eduwallet.services import authority_service, permission_ledger
from eduwallet.services.errors import (
    InvalidCapability,
    InvalidTransition,
    LedgerSubmissionFailure,
    SessionClosed,
)
from eduwallet.services.identity_session import Session, authenticate
from eduwallet.services.key_derivation import derive
from eduwallet.services.permission_ledger import TransitionKind, TransitionStatus
from tests.conftest import HOLDER_PROFILE, World, authority, seed_world


async def _login(ledger: InMemoryLedger, world: World) -> Session:
    return await authenticate(
        ledger, world.credentials.identifier, world.credentials.secret
    )


async def _yield() -> None:
    # Let a started approve/revoke run up to its wait on the ledger.
    for _ in range(3):
        await asyncio.sleep(0)


def _assert_one_entry_per_key(session: Session) -> None:
    keys = [p.key for p in session.permissions.view().all()]
    assert len(keys) == len(set(keys))


# ---- loading ----


def test_load_all_partitions_by_phase_and_capability(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        view = await session.permissions.load_all()

        assert view.requests == (Permission.request(world.requester.address, Capability.READ),)
        assert view.read == ()
        # The registering university can write the record it created.
        assert view.write == (Permission.grant(world.university.address, Capability.WRITE),)

    asyncio.run(scenario())


def test_load_all_is_cached_until_invalidated(
    ledger: InMemoryLedger, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)

        reads = 0
        original = ledger.read

        async def counting_read(reader, query):
            nonlocal reads
            reads += 1
            return await original(reader, query)

        monkeypatch.setattr(ledger, "read", counting_read)

        await session.permissions.load_all()
        after_first = reads
        assert after_first == 4  # one query per role

        await session.permissions.load_all()
        assert reads == after_first

        # An out-of-band change is invisible until an explicit refresh.
        await authority_service.request_permission(
            ledger, world.requester, world.credentials.record_address, Capability.WRITE
        )
        assert len((await session.permissions.load_all()).requests) == 1

        session.permissions.invalidate()
        assert len((await session.permissions.load_all()).requests) == 2
        assert reads == after_first * 2

    asyncio.run(scenario())


# ---- approve ----


def test_approve_moves_request_to_grant_before_confirmation(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]

        ledger.auto_settle = False
        task = asyncio.create_task(session.permissions.approve(request))
        await _yield()

        optimistic = session.permissions.view()
        assert optimistic.requests == ()
        assert optimistic.read == (request.granted(),)
        assert not task.done()

        ledger.settle_all()
        assert await task == request.granted()
        assert session.permissions.view() == optimistic

        # The ledger agrees with the optimistic view.
        assert await session.permissions.refresh() == optimistic

    asyncio.run(scenario())


def test_approve_failure_restores_previous_view(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        before = await session.permissions.load_all()
        request = before.requests[0]

        ledger.auto_settle = False
        task = asyncio.create_task(session.permissions.approve(request))
        await _yield()
        [pending] = ledger.inflight()
        ledger.fail(pending.operation_id, "reverted")

        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await task
        assert exc_info.value.reason == "reverted"
        assert exc_info.value.operation_id == pending.operation_id
        assert session.permissions.view() == before

    asyncio.run(scenario())


def test_approve_rejected_by_ledger_rolls_back(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        before = await session.permissions.load_all()

        ledger.fail_next("out of gas", kind="grant")
        with pytest.raises(LedgerSubmissionFailure, match="out of gas"):
            await session.permissions.approve(before.requests[0])
        assert session.permissions.view() == before

    asyncio.run(scenario())


# ---- revoke and deny ----


def test_revoke_removes_grant_and_rolls_back_on_failure(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]
        grant = await session.permissions.approve(request)
        granted_view = session.permissions.view()

        ledger.auto_settle = False
        task = asyncio.create_task(session.permissions.revoke(grant))
        await _yield()
        assert session.permissions.view().read == ()

        ledger.fail(ledger.inflight()[0].operation_id)
        with pytest.raises(LedgerSubmissionFailure):
            await task
        assert session.permissions.view() == granted_view

        ledger.auto_settle = True
        await session.permissions.revoke(grant)
        assert session.permissions.view().read == ()
        assert (await session.permissions.refresh()).read == ()

    asyncio.run(scenario())


def test_deny_removes_request(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]

        await session.permissions.deny(request)
        assert session.permissions.view().requests == ()
        assert (await session.permissions.refresh()).requests == ()

        # A denied counterparty may ask again.
        await authority_service.request_permission(
            ledger, world.requester, world.credentials.record_address, Capability.READ
        )
        assert (await session.permissions.refresh()).requests == (request,)

    asyncio.run(scenario())


def test_confirmed_revoke_marks_reload_when_counterparty_held_more(
    ledger: InMemoryLedger,
) -> None:
    """The ledger's revoke drops every role of the counterparty."""

    async def scenario() -> None:
        world = await seed_world(ledger)
        await authority_service.request_permission(
            ledger, world.requester, world.credentials.record_address, Capability.WRITE
        )
        session = await _login(ledger, world)
        view = await session.permissions.load_all()
        read_request = next(p for p in view.requests if p.capability is Capability.READ)
        grant = await session.permissions.approve(read_request)
        assert not session.permissions.needs_reload

        await session.permissions.revoke(grant)
        assert session.permissions.needs_reload
        assert (await session.permissions.load_all()).requests == ()

    asyncio.run(scenario())


# ---- revert ----


def test_revert_is_idempotent(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]

        session.permissions.revert(request)
        session.permissions.revert(request)
        assert session.permissions.view().requests == (request,)

    asyncio.run(scenario())


def test_revert_reinserts_into_the_set_matching_its_phase(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]

        session.permissions.revert(request.granted())
        view = session.permissions.view()
        assert view.requests == ()
        assert view.read == (request.granted(),)
        _assert_one_entry_per_key(session)

    asyncio.run(scenario())


# ---- reconciliation ----


def test_late_confirmation_after_rollback_marks_view_for_reload(
    ledger: InMemoryLedger,
) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        before = await session.permissions.load_all()

        ledger.auto_settle = False
        task = asyncio.create_task(session.permissions.approve(before.requests[0]))
        await _yield()
        [pending] = ledger.inflight()
        # Adapter gave up waiting...
        ledger.fail(pending.operation_id, "timeout")
        with pytest.raises(LedgerSubmissionFailure):
            await task

        [transition] = session.permissions.transitions()
        assert transition.status is TransitionStatus.ROLLED_BACK
        assert transition.kind is TransitionKind.APPROVE

        # ...but the receipt turned up later.
        assert session.permissions.reconcile(pending.operation_id, Confirmed(pending.operation_id)) is False
        assert session.permissions.view() == before
        assert session.permissions.needs_reload

    asyncio.run(scenario())


def test_reconcile_ignores_repeats_and_unknown_ids(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]
        await session.permissions.approve(request)
        confirmed_view = session.permissions.view()

        [transition] = session.permissions.transitions()
        op_id = transition.operation_id
        assert transition.status is TransitionStatus.CONFIRMED
        assert transition.before == request
        assert transition.after == request.granted()

        assert session.permissions.reconcile(op_id, Failed(op_id, "late")) is False
        assert session.permissions.reconcile("nope", Confirmed("nope")) is False
        assert session.permissions.view() == confirmed_view

    asyncio.run(scenario())


def test_reload_while_in_flight_keeps_optimistic_state(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]

        ledger.auto_settle = False
        task = asyncio.create_task(session.permissions.approve(request))
        await _yield()

        reloaded = await session.permissions.refresh()
        assert reloaded.requests == ()
        assert reloaded.read == (request.granted(),)

        ledger.settle_all()
        await task

    asyncio.run(scenario())


class SlowSubmitLedger(InMemoryLedger):
    """Suspends inside submit() the way a networked gateway does."""

    async def submit(self, signer, operation):
        await asyncio.sleep(0.01)
        return await super().submit(signer, operation)


def test_reload_during_submit_keeps_the_move() -> None:
    async def scenario() -> None:
        ledger = SlowSubmitLedger()
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]

        task = asyncio.create_task(session.permissions.approve(request))
        await _yield()
        assert ledger.inflight() == []

        reloaded = await session.permissions.refresh()
        assert reloaded.requests == ()
        assert reloaded.read == (request.granted(),)

        await task
        view = session.permissions.view()
        assert view.requests == ()
        assert view.read == (request.granted(),)
        assert session.permissions.transitions()[-1].status is TransitionStatus.CONFIRMED
        assert await session.permissions.refresh() == view

    asyncio.run(scenario())


def test_submit_error_leaves_no_log_entry(
    ledger: InMemoryLedger, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        before = await session.permissions.load_all()

        async def unreachable(signer, operation):
            raise ConnectionError("node down")

        monkeypatch.setattr(ledger, "submit", unreachable)
        with pytest.raises(ConnectionError):
            await session.permissions.approve(before.requests[0])
        assert session.permissions.transitions() == ()
        assert session.permissions.view() == before

    asyncio.run(scenario())

# ---- serialization ----


def test_actions_on_the_same_key_are_serialized(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]

        ledger.auto_settle = False
        first = asyncio.create_task(session.permissions.approve(request))
        second = asyncio.create_task(session.permissions.approve(request))
        await _yield()
        assert len(ledger.inflight()) == 1

        ledger.settle_all()
        await first
        with pytest.raises(InvalidTransition):
            await second
        _assert_one_entry_per_key(session)

    asyncio.run(scenario())


def test_actions_on_different_keys_run_concurrently(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        await authority_service.request_permission(
            ledger, world.requester, world.credentials.record_address, Capability.WRITE
        )
        session = await _login(ledger, world)
        view = await session.permissions.load_all()
        assert len(view.requests) == 2

        ledger.auto_settle = False
        tasks = [asyncio.create_task(session.permissions.approve(p)) for p in view.requests]
        await _yield()
        assert len(ledger.inflight()) == 2

        ledger.settle_all()
        await asyncio.gather(*tasks)
        final = session.permissions.view()
        assert final.requests == ()
        assert len(final.read) == 1
        assert world.requester.address in {p.counterparty for p in final.write}
        _assert_one_entry_per_key(session)

    asyncio.run(scenario())


# ---- bookkeeping ----


def test_log_and_key_locks_stay_bounded(
    ledger: InMemoryLedger, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(permission_ledger, "SETTLED_HISTORY", 4)

    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)

        for _ in range(5):
            request = (await session.permissions.refresh()).requests[0]
            granted = await session.permissions.approve(request)
            await session.permissions.revoke(granted)
            await authority_service.request_permission(
                ledger, world.requester, world.credentials.record_address, Capability.READ
            )

        log = session.permissions.transitions()
        assert len(log) == 4
        assert log[-1].kind is TransitionKind.REVOKE
        assert all(t.status is TransitionStatus.CONFIRMED for t in log)
        assert session.permissions._key_locks == {}
        assert session.permissions._lock_users == {}

    asyncio.run(scenario())


def test_pending_entries_survive_pruning(
    ledger: InMemoryLedger, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(permission_ledger, "SETTLED_HISTORY", 0)

    async def scenario() -> None:
        world = await seed_world(ledger)
        await authority_service.request_permission(
            ledger, world.requester, world.credentials.record_address, Capability.WRITE
        )
        session = await _login(ledger, world)
        read_request, write_request = (await session.permissions.load_all()).requests

        ledger.auto_settle = False
        slow = asyncio.create_task(session.permissions.approve(write_request))
        fast = asyncio.create_task(session.permissions.approve(read_request))
        await _yield()
        assert len(session.permissions._key_locks) == 2

        write_op, read_op = (p.operation_id for p in ledger.inflight())
        ledger.settle(read_op)
        await fast
        [remaining] = session.permissions.transitions()
        assert remaining.operation_id == write_op
        assert remaining.status is TransitionStatus.PENDING

        ledger.settle(write_op)
        await slow
        assert session.permissions.transitions() == ()
        assert session.permissions._key_locks == {}

    asyncio.run(scenario())


# ---- invalid calls ----


def test_invalid_transitions_submit_nothing(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        request = (await session.permissions.load_all()).requests[0]
        ledger.auto_settle = False

        with pytest.raises(InvalidTransition):
            await session.permissions.approve(request.granted())
        with pytest.raises(InvalidTransition):
            await session.permissions.revoke(request)
        with pytest.raises(InvalidTransition):
            await session.permissions.revoke(request.granted())  # not granted yet
        with pytest.raises(InvalidTransition):
            await session.permissions.approve(
                Permission.request(world.requester.address, Capability.WRITE)
            )
        assert ledger.inflight() == []

    asyncio.run(scenario())


def test_unknown_capability_is_rejected(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        await session.permissions.load_all()

        bogus = Permission(world.requester.address, "admin", Phase.REQUESTED)  # type: ignore[arg-type]
        with pytest.raises(InvalidCapability):
            await session.permissions.approve(bogus)

    asyncio.run(scenario())


def test_closed_session_cannot_act(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        world = await seed_world(ledger)
        session = await _login(ledger, world)
        session.close()
        with pytest.raises(SessionClosed):
            session.permissions  # noqa: B018

    asyncio.run(scenario())


# ---- end to end ----


def test_two_logins_then_approve_then_ledger_failure(ledger: InMemoryLedger) -> None:
    async def scenario() -> None:
        university = authority("unipd")
        requester = authority("tudelft")
        await authority_service.subscribe(ledger, university, "Università di Padova", "IT", "UNIPD")
        await authority_service.subscribe(ledger, requester, "TU Delft", "NL", "TUD")
        holder = derive("pw1", "1")
        pending = await ledger.submit(university, RegisterHolder(holder.address, HOLDER_PROFILE))
        assert isinstance(await pending, Confirmed)

        first = await authenticate(ledger, "1", "pw1")
        second = await authenticate(ledger, "1", "pw1")
        assert first.identity == second.identity
        assert first.identity.private_key == second.identity.private_key

        await authority_service.request_permission(
            ledger, requester, first.record_address, Capability.READ
        )
        view = await first.permissions.load_all()
        assert len(view.requests) == 1

        ledger.auto_settle = False
        task = asyncio.create_task(first.permissions.approve(view.requests[0]))
        await _yield()
        assert first.permissions.view().requests == ()
        assert len(first.permissions.view().read) == 1

        ledger.fail(ledger.inflight()[0].operation_id)
        with pytest.raises(LedgerSubmissionFailure):
            await task
        assert len(first.permissions.view().requests) == 1
        assert first.permissions.view().read == ()

    asyncio.run(scenario())
