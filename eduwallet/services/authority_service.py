"""Operations performed by an issuing authority (university side).

This is a library for university tooling, not part of the wallet's HTTP
surface: the holder-facing app in eduwallet.main never imports it.  Its
callers are authority scripts (scripts/demo_wallet_flow.py) and the test
suite, which uses it to seed records and permission requests.

Every function takes the acting authority's SigningIdentity explicitly.
There is no "current university" held anywhere in the process, so one
process can act for several authorities and tests can build as many as
they need.

Unlike the holder's PermissionLedger, nothing here keeps local state, so
there is nothing to roll back: each call submits, awaits the outcome and
turns Failed into LedgerSubmissionFailure.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from eduwallet.ledger.gateway import (
    Enroll,
    Evaluate,
    Failed,
    HolderRecordQuery,
    LedgerGateway,
    Operation,
    ProfileQuery,
    RecordAddressQuery,
    RegisterHolder,
    RequestPermission,
    SubscribeAuthority,
    VerifyPermissionQuery,
)
from eduwallet.models.identity import SigningIdentity
from eduwallet.models.permission import Capability
from eduwallet.models.record import (
    CourseInfo,
    Evaluation,
    HolderRecord,
    Profile,
    credits_to_ledger,
    date_to_timestamp,
)
from eduwallet.services.blob_store import BlobStore
from eduwallet.services.counterparty_directory import CounterpartyDirectory
from eduwallet.services.errors import LedgerSubmissionFailure
from eduwallet.services.key_derivation import derive, generate_credentials

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HolderCredentials:
    """Handed to the holder once at registration.  Never stored."""

    identifier: str
    secret: str
    holder_address: str
    record_address: str

    def __repr__(self) -> str:
        return (
            f"HolderCredentials(identifier={self.identifier}, "
            f"holder_address={self.holder_address})"
        )


async def _submit_and_wait(
    gateway: LedgerGateway, authority: SigningIdentity, operation: Operation
) -> str:
    pending = await gateway.submit(authority, operation)
    outcome = await pending
    if isinstance(outcome, Failed):
        logger.warning(
            "%s failed: %s",
            operation.kind,
            outcome.reason,
            extra={"counterparty": authority.address, "operation_id": outcome.operation_id},
        )
        raise LedgerSubmissionFailure(outcome.operation_id, outcome.reason)
    return outcome.operation_id


async def subscribe(
    gateway: LedgerGateway,
    authority: SigningIdentity,
    name: str,
    country: str,
    short_name: str,
) -> None:
    await _submit_and_wait(gateway, authority, SubscribeAuthority(name, country, short_name))
    logger.info("Authority subscribed name=%s", name, extra={"counterparty": authority.address})


async def register_holder(
    gateway: LedgerGateway, authority: SigningIdentity, profile: Profile
) -> HolderCredentials:
    """Create fresh credentials, derive the holder's identity and register it."""
    identifier, secret = generate_credentials()
    holder = derive(secret, identifier)
    await _submit_and_wait(gateway, authority, RegisterHolder(holder.address, profile))
    record_address = await gateway.read(authority, RecordAddressQuery(holder.address))
    logger.info(
        "Registered holder record=%s",
        record_address,
        extra={"counterparty": authority.address, "holder": holder.address},
    )
    return HolderCredentials(identifier, secret, holder.address, record_address)


async def enroll(
    gateway: LedgerGateway,
    authority: SigningIdentity,
    record_address: str,
    courses: Iterable[CourseInfo],
) -> int:
    """One submission per course, in order.  Returns how many were enrolled."""
    enrolled = 0
    for course in courses:
        await _submit_and_wait(
            gateway,
            authority,
            Enroll(
                record_address,
                course.code,
                course.name,
                course.program,
                credits_to_ledger(course.credits),
            ),
        )
        enrolled += 1
    return enrolled


async def evaluate(
    gateway: LedgerGateway,
    authority: SigningIdentity,
    record_address: str,
    evaluations: Iterable[Evaluation],
    blob_store: BlobStore,
) -> int:
    evaluated = 0
    for evaluation in evaluations:
        cid = ""
        if evaluation.certificate:
            cid = await blob_store.publish(evaluation.certificate)
        await _submit_and_wait(
            gateway,
            authority,
            Evaluate(
                record_address,
                evaluation.code,
                evaluation.grade,
                date_to_timestamp(evaluation.evaluated_on),
                cid,
            ),
        )
        evaluated += 1
    return evaluated


async def request_permission(
    gateway: LedgerGateway,
    authority: SigningIdentity,
    record_address: str,
    capability: Capability,
) -> None:
    capability = Capability.parse(capability)
    await _submit_and_wait(gateway, authority, RequestPermission(record_address, capability))
    logger.info(
        "Requested %s permission on record=%s",
        capability,
        record_address,
        extra={"counterparty": authority.address, "capability": str(capability)},
    )


async def verify_permission(
    gateway: LedgerGateway, authority: SigningIdentity, record_address: str
) -> Capability | None:
    return await gateway.read(authority, VerifyPermissionQuery(record_address))


async def get_holder_profile(
    gateway: LedgerGateway, authority: SigningIdentity, record_address: str
) -> Profile:
    return await gateway.read(authority, ProfileQuery(record_address))


async def get_holder_record(
    gateway: LedgerGateway,
    authority: SigningIdentity,
    record_address: str,
    directory: CounterpartyDirectory,
) -> HolderRecord:
    """Full record, with every issuing authority checked against the ledger.

    Raises UnknownCounterparty if a result names an authority the ledger
    doesn't know.
    """
    record: HolderRecord = await gateway.read(authority, HolderRecordQuery(record_address))
    for address in {r.counterparty for r in record.results}:
        await directory.resolve(authority, address)
    return record
