"""Shareable snapshots of a holder's record.

The holder picks which courses to disclose.  A snapshot carries the
profile, those results, the record address a verifier can look up on the
ledger, when it was made and an optional expiry.

`digest` is a SHA-256 over the canonical JSON of everything else in the
snapshot, so a verifier can tell whether the payload was edited after it
left the wallet.  It is not a signature: anyone can recompute it.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from eduwallet.models.record import AcademicResult, HolderRecord, Profile
from eduwallet.services.errors import InvalidShare

logger = logging.getLogger(__name__)

SHARE_FORMAT_VERSION = "1.0"


@dataclass(frozen=True, slots=True)
class SharedCredential:
    holder_address: str
    record_address: str
    profile: Profile
    results: tuple[AcademicResult, ...]
    issued_at: datetime
    expires_at: datetime | None
    digest: str
    version: str = SHARE_FORMAT_VERSION

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at

    def payload(self) -> dict[str, Any]:
        """JSON-ready form, without the digest."""
        profile = self.profile
        return {
            "version": self.version,
            "holder_address": self.holder_address,
            "record_address": self.record_address,
            "profile": {
                "name": profile.name,
                "surname": profile.surname,
                "birth_date": profile.birth_date.isoformat(),
                "birth_place": profile.birth_place,
                "country": profile.country,
            },
            "results": [_result_payload(r) for r in self.results],
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    def verify(self) -> bool:
        return self.digest == _digest(self.payload())


def _result_payload(result: AcademicResult) -> dict[str, Any]:
    return {
        "code": result.code,
        "name": result.name,
        "counterparty": result.counterparty,
        "program": result.program,
        "credits": str(result.credits),
        "grade": result.grade,
        "evaluated_on": result.evaluated_on.isoformat() if result.evaluated_on else None,
        "certificate": result.certificate,
    }


def _digest(payload: dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def select_results(
    results: Iterable[AcademicResult], course_codes: Iterable[str]
) -> list[AcademicResult]:
    """Results whose code is in `course_codes`, in record order.

    An empty selection shares every result.  A code that matches no
    result raises InvalidShare rather than silently sharing less than
    the holder asked for.
    """
    results = list(results)
    wanted = set(course_codes)
    if not wanted:
        return results
    missing = wanted - {r.code for r in results}
    if missing:
        raise InvalidShare(f"no result for course code(s): {', '.join(sorted(missing))}")
    return [r for r in results if r.code in wanted]


def create_shareable(
    record: HolderRecord,
    holder_address: str,
    record_address: str,
    course_codes: Iterable[str] = (),
    *,
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> SharedCredential:
    issued_at = now or datetime.now(UTC)
    if expires_at is not None:
        if expires_at.tzinfo is None:
            raise InvalidShare("expires_at must carry a timezone")
        if expires_at <= issued_at:
            raise InvalidShare("expires_at must be in the future")

    results = tuple(select_results(record.results, course_codes))
    draft = SharedCredential(
        holder_address=holder_address,
        record_address=record_address,
        profile=record.profile,
        results=results,
        issued_at=issued_at,
        expires_at=expires_at,
        digest="",
    )
    credential = replace(draft, digest=_digest(draft.payload()))
    logger.info(
        "Created shareable credential results=%d expires=%s",
        len(results),
        expires_at.isoformat() if expires_at else "never",
        extra={"holder": holder_address},
    )
    return credential
