"""Holder-side permission management (/v1/permissions).

Each action returns the view as it stands once the ledger has answered,
re-read from the ledger when the answer made the cached view stale.
On a ledger failure the view has already been rolled back when the 502
is sent, so a client that re-fetches sees the pre-action state.
"""

from __future__ import annotations

import logging
from typing import Annotated

from eth_utils import to_checksum_address
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from eduwallet.api.dependencies import WalletContext, get_directory, require_session
from eduwallet.models.permission import Capability, Permission, PermissionView
from eduwallet.services.counterparty_directory import CounterpartyDirectory
from eduwallet.services.errors import (
    InvalidCapability,
    InvalidTransition,
    LedgerReadError,
    LedgerSubmissionFailure,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/permissions", tags=["permissions"])


class PermissionIn(BaseModel):
    counterparty: str
    capability: str


class PermissionOut(BaseModel):
    counterparty: str
    counterparty_name: str
    capability: str
    phase: str


class PermissionViewOut(BaseModel):
    requests: list[PermissionOut]
    read: list[PermissionOut]
    write: list[PermissionOut]


async def _render(
    view: PermissionView, ctx: WalletContext, directory: CounterpartyDirectory
) -> PermissionViewOut:
    names = await directory.resolve_many(
        ctx.session.identity, [p.counterparty for p in view.all()]
    )

    def out(permissions: tuple[Permission, ...]) -> list[PermissionOut]:
        return [
            PermissionOut(
                counterparty=p.counterparty,
                counterparty_name=names[p.counterparty].name,
                capability=p.capability.value,
                phase=p.phase.value,
            )
            for p in permissions
        ]

    return PermissionViewOut(
        requests=out(view.requests), read=out(view.read), write=out(view.write)
    )


async def _loaded(ctx: WalletContext) -> PermissionView:
    """The cached view, re-read from the ledger when it was marked stale."""
    try:
        return await ctx.session.permissions.load_all()
    except LedgerReadError as e:
        logger.warning("Permission load failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Could not read permissions from the ledger. Try again."},
        ) from None


def _parse(payload: PermissionIn) -> tuple[str, Capability]:
    try:
        capability = Capability.parse(payload.capability)
    except InvalidCapability as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e)},
        ) from None
    try:
        counterparty = to_checksum_address(payload.counterparty)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "counterparty must be a 20-byte hex address"},
        ) from None
    return counterparty, capability


async def _act(action, permission: Permission) -> None:
    try:
        await action(permission)
    except InvalidTransition as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e)},
        ) from None
    except LedgerSubmissionFailure as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": "The ledger did not accept the change. "
                "Your permissions are unchanged; try again.",
                "operation_id": e.operation_id,
                "reason": e.reason,
            },
        ) from None


@router.get("", response_model=PermissionViewOut)
async def get_permissions(
    ctx: Annotated[WalletContext, Depends(require_session)],
    directory: Annotated[CounterpartyDirectory, Depends(get_directory)],
) -> PermissionViewOut:
    return await _render(await _loaded(ctx), ctx, directory)


@router.post("/refresh", response_model=PermissionViewOut)
async def refresh_permissions(
    ctx: Annotated[WalletContext, Depends(require_session)],
    directory: Annotated[CounterpartyDirectory, Depends(get_directory)],
) -> PermissionViewOut:
    ctx.session.permissions.invalidate()
    return await _render(await _loaded(ctx), ctx, directory)


@router.post("/approve", response_model=PermissionViewOut)
async def approve_permission(
    payload: PermissionIn,
    ctx: Annotated[WalletContext, Depends(require_session)],
    directory: Annotated[CounterpartyDirectory, Depends(get_directory)],
) -> PermissionViewOut:
    counterparty, capability = _parse(payload)
    await _loaded(ctx)
    permission = Permission.request(counterparty, capability)
    await _act(ctx.session.permissions.approve, permission)
    return await _render(await _loaded(ctx), ctx, directory)


@router.post("/revoke", response_model=PermissionViewOut)
async def revoke_permission(
    payload: PermissionIn,
    ctx: Annotated[WalletContext, Depends(require_session)],
    directory: Annotated[CounterpartyDirectory, Depends(get_directory)],
) -> PermissionViewOut:
    counterparty, capability = _parse(payload)
    await _loaded(ctx)
    permission = Permission.grant(counterparty, capability)
    await _act(ctx.session.permissions.revoke, permission)
    # The ledger clears every role of the counterparty, so reload if needed.
    return await _render(await _loaded(ctx), ctx, directory)


@router.post("/deny", response_model=PermissionViewOut)
async def deny_permission(
    payload: PermissionIn,
    ctx: Annotated[WalletContext, Depends(require_session)],
    directory: Annotated[CounterpartyDirectory, Depends(get_directory)],
) -> PermissionViewOut:
    counterparty, capability = _parse(payload)
    await _loaded(ctx)
    permission = Permission.request(counterparty, capability)
    await _act(ctx.session.permissions.deny, permission)
    # The ledger clears every role of the counterparty, so reload if needed.
    return await _render(await _loaded(ctx), ctx, directory)
