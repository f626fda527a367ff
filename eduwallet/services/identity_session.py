"""Holder login: credentials -> signing identity -> record snapshot.

ONE OPAQUE FAILURE
-------------------
A wrong secret doesn't fail at derivation; it derives a perfectly good
key for an address that simply has no record.  A wrong identifier does
the same.  Both end in the same AuthenticationError with the same
message, so the endpoint can't be used to discover which identifiers
exist.  The log line for the operator is more specific; the response is
not.

WHAT A SESSION HOLDS
---------------------
  identity        the derived SigningIdentity, in memory only
  record_address  the holder's record on the ledger
  record          profile + results, read once at login (immutable)
  permissions     a PermissionLedger bound to this session (lazy)

close() drops the identity.  Any later use raises SessionClosed rather
than silently signing with a key the holder believes is gone.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from starlette.concurrency import run_in_threadpool

from eduwallet.core.metrics import AUTHENTICATIONS, SESSIONS_ACTIVE
from eduwallet.ledger.gateway import HolderRecordQuery, LedgerGateway, RecordAddressQuery
from eduwallet.models.identity import SigningIdentity
from eduwallet.models.record import AcademicResult, HolderRecord
from eduwallet.services import key_derivation
from eduwallet.services.credential_share import SharedCredential, create_shareable
from eduwallet.services.errors import AuthenticationError, LedgerReadError, SessionClosed
from eduwallet.services.permission_ledger import PermissionLedger
from eduwallet.services.record_aggregator import group_by_program

logger = logging.getLogger(__name__)


@dataclass(slots=True, eq=False)
class Session:
    gateway: LedgerGateway
    holder_address: str
    record_address: str
    record: HolderRecord
    _identity: SigningIdentity | None = field(repr=False)
    _permissions: PermissionLedger | None = field(default=None, repr=False)

    @property
    def identity(self) -> SigningIdentity:
        if self._identity is None:
            raise SessionClosed("session is closed")
        return self._identity

    @property
    def closed(self) -> bool:
        return self._identity is None

    @property
    def permissions(self) -> PermissionLedger:
        if self._identity is None:
            raise SessionClosed("session is closed")
        if self._permissions is None:
            self._permissions = PermissionLedger(self)
        return self._permissions

    def programs_of(self, counterparty: str) -> dict[str, list[AcademicResult]]:
        return group_by_program(self.record.results, counterparty)

    def share(
        self,
        course_codes: Iterable[str] = (),
        *,
        expires_at: datetime | None = None,
    ) -> SharedCredential:
        """Snapshot of the chosen results for a verifier.  Needs an open
        session even though nothing is signed."""
        if self._identity is None:
            raise SessionClosed("session is closed")
        return create_shareable(
            self.record,
            self.holder_address,
            self.record_address,
            course_codes,
            expires_at=expires_at,
        )

    def close(self) -> None:
        if self._identity is None:
            return
        self._identity = None
        self._permissions = None
        SESSIONS_ACTIVE.dec()
        logger.info("Session closed", extra={"holder": self.holder_address})


async def authenticate(
    gateway: LedgerGateway, identifier: str, secret: str
) -> Session:
    """One attempt, no retry.  Raises AuthenticationError on any credential
    problem; DerivationError only if PBKDF2 itself is unavailable."""
    if not identifier or not secret:
        AUTHENTICATIONS.labels(result="failure").inc()
        logger.info("Authentication failed: empty credential")
        raise AuthenticationError()

    # 100k PBKDF2 rounds; keep them off the event loop.
    identity = await run_in_threadpool(key_derivation.derive, secret, identifier)

    try:
        record_address = await gateway.read(
            identity, RecordAddressQuery(identity.address)
        )
        record = await gateway.read(identity, HolderRecordQuery(record_address))
    except LedgerReadError as e:
        AUTHENTICATIONS.labels(result="failure").inc()
        logger.info(
            "Authentication failed: %s",
            e,
            extra={"holder": identity.address},
        )
        raise AuthenticationError() from None

    AUTHENTICATIONS.labels(result="success").inc()
    SESSIONS_ACTIVE.inc()
    logger.info(
        "Holder authenticated record=%s results=%d",
        record_address,
        len(record.results),
        extra={"holder": identity.address},
    )
    return Session(
        gateway=gateway,
        holder_address=identity.address,
        record_address=record_address,
        record=record,
        _identity=identity,
    )
