"""Read-only views of the holder's record (/v1/wallet)."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from eduwallet.api.dependencies import WalletContext, get_directory, require_session
from eduwallet.models.record import AcademicResult, Profile
from eduwallet.services.blob_store import certificate_url
from eduwallet.services.counterparty_directory import CounterpartyDirectory
from eduwallet.services.errors import InvalidShare
from eduwallet.services.record_aggregator import counterparty_addresses

router = APIRouter(prefix="/v1/wallet", tags=["wallet"])


class ProfileOut(BaseModel):
    name: str
    surname: str
    birth_date: date
    birth_place: str
    country: str

    @staticmethod
    def of(profile: Profile) -> ProfileOut:
        return ProfileOut(
            name=profile.name,
            surname=profile.surname,
            birth_date=profile.birth_date,
            birth_place=profile.birth_place,
            country=profile.country,
        )


class ResultOut(BaseModel):
    code: str
    name: str
    counterparty: str
    program: str
    credits: Decimal
    grade: str | None
    evaluated_on: date | None
    certificate_url: str | None

    @staticmethod
    def of(result: AcademicResult) -> ResultOut:
        return ResultOut(
            code=result.code,
            name=result.name,
            counterparty=result.counterparty,
            program=result.program,
            credits=result.credits,
            grade=result.grade,
            evaluated_on=result.evaluated_on,
            certificate_url=certificate_url(result.certificate),
        )


class WalletOut(BaseModel):
    holder_address: str
    record_address: str
    profile: ProfileOut
    results: list[ResultOut]


class CounterpartyOut(BaseModel):
    address: str
    name: str
    country: str
    short_name: str


class ProgramOut(BaseModel):
    program: str
    results: list[ResultOut]


class ShareIn(BaseModel):
    course_codes: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None


class ShareOut(BaseModel):
    version: str
    holder_address: str
    record_address: str
    profile: ProfileOut
    results: list[ResultOut]
    issued_at: datetime
    expires_at: datetime | None
    digest: str


@router.get("", response_model=WalletOut)
async def get_wallet(
    ctx: Annotated[WalletContext, Depends(require_session)],
) -> WalletOut:
    session = ctx.session
    return WalletOut(
        holder_address=session.holder_address,
        record_address=session.record_address,
        profile=ProfileOut.of(session.record.profile),
        results=[ResultOut.of(r) for r in session.record.results],
    )


@router.get("/counterparties", response_model=list[CounterpartyOut])
async def list_counterparties(
    ctx: Annotated[WalletContext, Depends(require_session)],
    directory: Annotated[CounterpartyDirectory, Depends(get_directory)],
) -> list[CounterpartyOut]:
    session = ctx.session
    resolved = await directory.resolve_many(
        session.identity, counterparty_addresses(session.record.results)
    )
    return [
        CounterpartyOut(
            address=c.address,
            name=c.name,
            country=c.country,
            short_name=c.short_name,
        )
        for c in resolved.values()
    ]


@router.get("/counterparties/{address}/programs", response_model=list[ProgramOut])
async def list_programs(
    address: str,
    ctx: Annotated[WalletContext, Depends(require_session)],
) -> list[ProgramOut]:
    grouped = ctx.session.programs_of(address)
    return [
        ProgramOut(program=program, results=[ResultOut.of(r) for r in results])
        for program, results in grouped.items()
    ]


@router.post("/share", response_model=ShareOut)
async def share_results(
    payload: ShareIn,
    ctx: Annotated[WalletContext, Depends(require_session)],
) -> ShareOut:
    """Snapshot of the chosen results, for a verifier to check against the
    ledger.  An empty `course_codes` shares everything."""
    try:
        shared = ctx.session.share(payload.course_codes, expires_at=payload.expires_at)
    except InvalidShare as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e)},
        ) from None
    return ShareOut(
        version=shared.version,
        holder_address=shared.holder_address,
        record_address=shared.record_address,
        profile=ProfileOut.of(shared.profile),
        results=[ResultOut.of(r) for r in shared.results],
        issued_at=shared.issued_at,
        expires_at=shared.expires_at,
        digest=shared.digest,
    )
