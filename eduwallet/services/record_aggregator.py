"""Pure views over a holder's results.  No I/O, no failure modes."""

from __future__ import annotations

from collections.abc import Iterable

from eduwallet.models.record import AcademicResult


def _same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def results_for_counterparty(
    results: Iterable[AcademicResult], counterparty: str
) -> list[AcademicResult]:
    return [r for r in results if _same_address(r.counterparty, counterparty)]


def group_by_program(
    results: Iterable[AcademicResult], counterparty: str
) -> dict[str, list[AcademicResult]]:
    """Results issued by `counterparty`, bucketed by program name.

    Buckets appear in order of each program's first result, and results
    keep their relative order inside a bucket.
    """
    grouped: dict[str, list[AcademicResult]] = {}
    for result in results_for_counterparty(results, counterparty):
        grouped.setdefault(result.program, []).append(result)
    return grouped


def counterparty_addresses(results: Iterable[AcademicResult]) -> list[str]:
    """Distinct issuing authorities, in order of first appearance."""
    seen: dict[str, None] = {}
    for result in results:
        seen.setdefault(result.counterparty, None)
    return list(seen)
