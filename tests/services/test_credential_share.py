from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from eduwallet.models.record import AcademicResult, HolderRecord
from eduwallet.services.credential_share import create_shareable, select_results
from eduwallet.services.errors import InvalidShare
from tests.conftest import HOLDER_PROFILE

UNIVERSITY = "0x" + "11" * 20
HOLDER = "0x" + "22" * 20
RECORD = "0x" + "33" * 20
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

RECORD_DATA = HolderRecord(
    HOLDER_PROFILE,
    (
        AcademicResult("A", "Algorithms", UNIVERSITY, "CS", Decimal("9.00")),
        AcademicResult(
            "B",
            "Linear Algebra",
            UNIVERSITY,
            "Math",
            Decimal("7.50"),
            grade="28",
            evaluated_on=date(2024, 6, 30),
            certificate="bafycert",
        ),
        AcademicResult("C", "Compilers", UNIVERSITY, "CS", Decimal("6.00")),
    ),
)


def _share(codes=(), **kwargs):
    return create_shareable(RECORD_DATA, HOLDER, RECORD, codes, now=NOW, **kwargs)


def test_empty_selection_shares_every_result() -> None:
    shared = _share()
    assert [r.code for r in shared.results] == ["A", "B", "C"]
    assert shared.profile == HOLDER_PROFILE
    assert shared.record_address == RECORD
    assert shared.issued_at == NOW
    assert shared.expires_at is None
    assert not shared.is_expired(NOW + timedelta(days=3650))


def test_selection_keeps_record_order() -> None:
    assert [r.code for r in select_results(RECORD_DATA.results, ["C", "A"])] == ["A", "C"]
    assert [r.code for r in _share(["B", "B"]).results] == ["B"]


def test_unknown_course_code_is_rejected() -> None:
    with pytest.raises(InvalidShare, match="X, Y"):
        _share(["A", "Y", "X"])


def test_expiry_must_be_in_the_future_and_aware() -> None:
    with pytest.raises(InvalidShare):
        _share(expires_at=NOW)
    with pytest.raises(InvalidShare):
        _share(expires_at=NOW - timedelta(minutes=1))
    with pytest.raises(InvalidShare):
        _share(expires_at=datetime(2030, 1, 1))


def test_expiry_is_stamped_and_checked() -> None:
    expires = NOW + timedelta(days=7)
    shared = _share(["B"], expires_at=expires)
    assert shared.payload()["expires_at"] == "2025-03-08T12:00:00+00:00"
    assert not shared.is_expired(NOW + timedelta(days=6))
    assert shared.is_expired(expires)


def test_payload_carries_profile_results_and_addresses() -> None:
    payload = _share(["B"]).payload()
    assert payload["record_address"] == RECORD
    assert payload["holder_address"] == HOLDER
    assert payload["profile"]["birth_date"] == "2001-12-10"
    assert payload["results"] == [
        {
            "code": "B",
            "name": "Linear Algebra",
            "counterparty": UNIVERSITY,
            "program": "Math",
            "credits": "7.50",
            "grade": "28",
            "evaluated_on": "2024-06-30",
            "certificate": "bafycert",
        }
    ]
    assert "digest" not in payload


def test_digest_detects_edits() -> None:
    shared = _share(["A", "B"])
    assert shared.verify()
    assert shared.digest == _share(["A", "B"]).digest
    assert shared.digest != _share(["A"]).digest

    forged = replace(shared, results=(replace(shared.results[0], grade="30L"),) + shared.results[1:])
    assert not forged.verify()
