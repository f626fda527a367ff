from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

# Credits are stored on the ledger as integer hundredths (7.5 -> 750).
_CREDIT_SCALE = 100
_TWO_PLACES = Decimal("0.01")


def date_from_timestamp(seconds: int) -> date | None:
    """Ledger dates are Unix seconds; 0 means "not set"."""
    if not seconds:
        return None
    return datetime.fromtimestamp(seconds, UTC).date()


def date_to_timestamp(value: date) -> int:
    return int(datetime(value.year, value.month, value.day, tzinfo=UTC).timestamp())


def credits_from_ledger(hundredths: int) -> Decimal:
    return (Decimal(hundredths) / _CREDIT_SCALE).quantize(_TWO_PLACES)


def credits_to_ledger(credits: Decimal | float | int) -> int:
    value = Decimal(str(credits))
    if value < 0:
        raise ValueError(f"credits must be non-negative (got {credits})")
    return int((value * _CREDIT_SCALE).to_integral_value())


@dataclass(frozen=True, slots=True)
class Profile:
    """Holder's biographical data. Only an authority can change it."""

    name: str
    surname: str
    birth_date: date
    birth_place: str
    country: str

    @staticmethod
    def from_ledger(
        name: str, surname: str, birth_date: int, birth_place: str, country: str
    ) -> Profile:
        return Profile(
            name=name,
            surname=surname,
            birth_date=datetime.fromtimestamp(birth_date, UTC).date(),
            birth_place=birth_place,
            country=country,
        )

    def to_ledger(self) -> tuple[str, str, int, str, str]:
        return (
            self.name,
            self.surname,
            date_to_timestamp(self.birth_date),
            self.birth_place,
            self.country,
        )


@dataclass(frozen=True, slots=True)
class AcademicResult:
    """One course outcome.

    Created pending by an enrollment (grade, evaluated_on and certificate
    all None) and completed in place by an evaluation.  Never deleted.
    """

    code: str
    name: str
    counterparty: str  # issuing authority's address
    program: str
    credits: Decimal
    grade: str | None = None
    evaluated_on: date | None = None
    certificate: str | None = None  # content identifier in the blob store

    @property
    def is_evaluated(self) -> bool:
        return self.grade is not None

    @staticmethod
    def from_ledger(
        *,
        name: str,
        code: str,
        university: str,
        degree_course: str,
        grade: str,
        date: int,
        ects: int,
        certificate_hash: str,
    ) -> AcademicResult:
        return AcademicResult(
            code=code,
            name=name,
            counterparty=university,
            program=degree_course,
            credits=credits_from_ledger(ects),
            grade=grade or None,
            evaluated_on=date_from_timestamp(date),
            certificate=certificate_hash or None,
        )


@dataclass(frozen=True, slots=True)
class HolderRecord:
    profile: Profile
    results: tuple[AcademicResult, ...] = ()


@dataclass(frozen=True, slots=True)
class CourseInfo:
    """What an authority supplies to enroll a holder in a course."""

    code: str
    name: str
    program: str
    credits: Decimal


@dataclass(frozen=True, slots=True)
class Evaluation:
    """What an authority supplies to complete a pending result."""

    code: str
    grade: str
    evaluated_on: date
    certificate: bytes | None = None
