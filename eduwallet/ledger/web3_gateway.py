"""LedgerGateway backed by an Ethereum JSON-RPC node.

SUBMIT = SIGN LOCALLY, SEND RAW, WATCH FOR THE RECEIPT
--------------------------------------------------------
The node never sees a private key.  For every operation we:

  1. build the contract call into a transaction (gas/fees filled by web3)
  2. sign it in-process with the caller's SigningIdentity
  3. send_raw_transaction -> tx hash, which becomes the operation id
  4. start a background task that waits for the receipt

submit() returns right after step 3 so the core can apply its
optimistic update while the block is being mined.  The background task
resolves the PendingOperation:

    receipt.status == 1        -> Confirmed
    receipt.status == 0        -> Failed("reverted")
    no receipt within timeout  -> Failed("timeout")

If the call reverts during gas estimation (step 1), nothing is sent and
the handle is resolved Failed immediately with the revert reason.

NONCES
-------
Two submissions from the same signer must not race for the same nonce.
A per-address asyncio.Lock covers build + sign + send; the receipt wait
runs outside the lock so a slow block doesn't serialize the wallet.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from eduwallet.core.metrics import LEDGER_SUBMISSIONS
from eduwallet.ledger.abi import STUDENT_ABI, STUDENTS_REGISTER_ABI, UNIVERSITY_ABI
from eduwallet.ledger.gateway import (
    CounterpartyQuery,
    Enroll,
    Evaluate,
    Failed,
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
from eduwallet.models.permission import Phase
from eduwallet.models.record import AcademicResult, HolderRecord, Profile
from eduwallet.services.errors import LedgerReadError, RecordNotFound

logger = logging.getLogger(__name__)

_ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def role_code(role: Role) -> bytes:
    """keccak256 of the role name, as the contracts compute it."""
    return Web3.keccak(text=role.value)


_ROLES_BY_CODE: dict[bytes, Role] = {role_code(role): role for role in Role}


def _profile_from_tuple(raw: Any) -> Profile:
    name, surname, birth_date, birth_place, country = raw
    return Profile.from_ledger(name, surname, int(birth_date), birth_place, country)


def _result_from_tuple(raw: Any) -> AcademicResult:
    name, code, university, degree_course, grade, date, ects, certificate = raw
    return AcademicResult.from_ledger(
        name=name,
        code=code,
        university=university,
        degree_course=degree_course,
        grade=grade,
        date=int(date),
        ects=int(ects),
        certificate_hash=certificate,
    )


class Web3LedgerGateway:
    def __init__(
        self, web3: AsyncWeb3, register_address: str, *, timeout_seconds: float = 120
    ) -> None:
        self._web3 = web3
        self._register = web3.eth.contract(
            address=Web3.to_checksum_address(register_address),
            abi=STUDENTS_REGISTER_ABI,
        )
        self._timeout = timeout_seconds
        self._nonce_locks: dict[str, asyncio.Lock] = {}
        self._watchers: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Contract handles
    # ------------------------------------------------------------------

    def _student(self, record_address: str):
        return self._web3.eth.contract(
            address=Web3.to_checksum_address(record_address), abi=STUDENT_ABI
        )

    def _university(self, wallet_address: str):
        return self._web3.eth.contract(
            address=Web3.to_checksum_address(wallet_address), abi=UNIVERSITY_ABI
        )

    def _contract_call(self, operation: Operation):
        match operation:
            case SubscribeAuthority(name=name, country=country, short_name=short):
                return self._register.functions.subscribe(name, country, short)
            case RegisterHolder(holder_address=holder, profile=profile):
                return self._register.functions.registerStudent(
                    Web3.to_checksum_address(holder), profile.to_ledger()
                )
            case Enroll(record_address=address) as enroll:
                return self._student(address).functions.enroll(
                    enroll.code, enroll.name, enroll.program, enroll.credits
                )
            case Evaluate(record_address=address) as evaluation:
                return self._student(address).functions.evaluate(
                    evaluation.code,
                    evaluation.grade,
                    evaluation.evaluated_at,
                    evaluation.certificate,
                )
            case RequestPermission(record_address=address, capability=capability):
                return self._student(address).functions.askForPermission(
                    role_code(Role.of(capability, Phase.REQUESTED))
                )
            case GrantPermission(
                record_address=address, counterparty=counterparty, capability=capability
            ):
                return self._student(address).functions.grantPermission(
                    role_code(Role.of(capability, Phase.GRANTED)),
                    Web3.to_checksum_address(counterparty),
                )
            case RevokePermission(record_address=address, counterparty=counterparty):
                return self._student(address).functions.revokePermission(
                    Web3.to_checksum_address(counterparty)
                )
        raise TypeError(f"unsupported operation {operation!r}")

    # ------------------------------------------------------------------
    # LedgerGateway
    # ------------------------------------------------------------------

    async def submit(
        self, signer: SigningIdentity, operation: Operation
    ) -> PendingOperation:
        call = self._contract_call(operation)
        lock = self._nonce_locks.setdefault(signer.address, asyncio.Lock())
        try:
            async with lock:
                nonce = await self._web3.eth.get_transaction_count(
                    signer.address, "pending"
                )
                tx = await call.build_transaction(
                    {"from": signer.address, "nonce": nonce}
                )
                signed = signer.sign_transaction(tx)
                tx_hash = await self._web3.eth.send_raw_transaction(
                    signed.raw_transaction
                )
        except ContractLogicError as e:
            return self._failed_now(operation, f"reverted: {e.message or e}")
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            logger.warning("Submission of %s failed before send: %s", operation.kind, e)
            return self._failed_now(operation, f"unavailable: {e}")

        pending = PendingOperation(tx_hash.to_0x_hex(), operation)
        logger.info(
            "Sent %s from=%s",
            pending,
            signer.address,
            extra={"operation_id": pending.operation_id},
        )
        task = asyncio.create_task(self._watch(pending, tx_hash))
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return pending

    def _failed_now(self, operation: Operation, reason: str) -> PendingOperation:
        pending = PendingOperation(new_operation_id(), operation)
        pending.fail(reason)
        LEDGER_SUBMISSIONS.labels(operation=operation.kind, outcome="failed").inc()
        return pending

    async def _watch(self, pending: PendingOperation, tx_hash) -> None:
        try:
            receipt = await self._web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._timeout
            )
        except TimeExhausted:
            logger.warning(
                "No receipt for %s after %.0fs",
                pending,
                self._timeout,
                extra={"operation_id": pending.operation_id},
            )
            pending.fail("timeout")
        except (Web3Exception, OSError) as e:
            logger.warning("Lost track of %s: %s", pending, e)
            pending.fail(f"unavailable: {e}")
        else:
            if receipt["status"] == 1:
                pending.confirm()
            else:
                pending.fail("reverted")
        outcome = "failed" if isinstance(await pending, Failed) else "confirmed"
        LEDGER_SUBMISSIONS.labels(operation=pending.kind, outcome=outcome).inc()

    async def read(self, reader: SigningIdentity, query: Query) -> Any:
        caller = {"from": reader.address}
        try:
            match query:
                case RecordAddressQuery(holder_address=holder):
                    address = await self._register.functions.getStudentWallet(
                        Web3.to_checksum_address(holder)
                    ).call(caller)
                    if not address or address == _ZERO_ADDRESS:
                        raise RecordNotFound("StudentNotPresent")
                    return address
                case HolderRecordQuery(record_address=address):
                    basic, results = await self._student(
                        address
                    ).functions.getStudentInfo().call(caller)
                    return HolderRecord(
                        profile=_profile_from_tuple(basic),
                        results=tuple(_result_from_tuple(r) for r in results),
                    )
                case ProfileQuery(record_address=address):
                    basic = await self._student(
                        address
                    ).functions.getStudentBasicInfo().call(caller)
                    return _profile_from_tuple(basic)
                case PermissionsQuery(record_address=address, role=role):
                    members = await self._student(address).functions.getPermissions(
                        role_code(role)
                    ).call(caller)
                    return tuple(members)
                case CounterpartyQuery(address=address):
                    wallets = await self._register.functions.getUniversitiesWallets(
                        [Web3.to_checksum_address(address)]
                    ).call(caller)
                    if not wallets or wallets[0] == _ZERO_ADDRESS:
                        raise RecordNotFound("UniversityNotPresent")
                    name, country, short_name = await self._university(
                        wallets[0]
                    ).functions.getUniversityInfo().call(caller)
                    return Counterparty(address, name, country, short_name)
                case VerifyPermissionQuery(record_address=address):
                    code = await self._student(
                        address
                    ).functions.verifyPermission().call(caller)
                    role = _ROLES_BY_CODE.get(bytes(code))
                    if role is None or role.phase is not Phase.GRANTED:
                        return None
                    return role.capability
        except ContractLogicError as e:
            message = str(e.message or e)
            if "NotPresent" in message:
                raise RecordNotFound(message) from e
            raise LedgerReadError(message) from e
        except (Web3Exception, OSError) as e:
            raise LedgerReadError(f"ledger unavailable: {e}") from e
        raise LedgerReadError(f"unsupported query {query!r}")
