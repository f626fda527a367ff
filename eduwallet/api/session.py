"""Wallet login and logout (/v1/session).

POST derives the holder's signing identity from {identifier, secret},
keeps the resulting Session in process memory and returns a bearer token
that refers to it.  DELETE discards the session and its identity.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from eduwallet.api.dependencies import WalletContext, get_gateway, require_session
from eduwallet.api.ratelimit import LOGIN_LIMIT, enforce_rate_limit, require_rate_limit
from eduwallet.core.config import SETTINGS
from eduwallet.ledger.gateway import LedgerGateway
from eduwallet.services import token_service
from eduwallet.services.errors import AuthenticationError, DerivationError
from eduwallet.services.identity_session import authenticate
from eduwallet.services.session_store import session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/session", tags=["session"])


class SessionIn(BaseModel):
    identifier: str
    secret: str


class SessionOut(BaseModel):
    token: str
    holder_address: str
    record_address: str
    expires_in: int


@router.post(
    "",
    response_model=SessionOut,
    dependencies=[Depends(require_rate_limit(LOGIN_LIMIT))],
)
async def create_session(
    payload: SessionIn,
    request: Request,
    gateway: Annotated[LedgerGateway, Depends(get_gateway)],
) -> SessionOut:
    identifier = payload.identifier.strip()
    await enforce_rate_limit(request, f"identifier:{identifier}", LOGIN_LIMIT)

    try:
        session = await authenticate(gateway, identifier, payload.secret)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": str(e)},
        ) from None
    except DerivationError:
        logger.exception("Key derivation unavailable")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Login is temporarily unavailable"},
        ) from None

    sid = session_store.put(session)
    token = token_service.create_session_token(sid=sid, holder=session.holder_address)
    return SessionOut(
        token=token,
        holder_address=session.holder_address,
        record_address=session.record_address,
        expires_in=SETTINGS.session_ttl_minutes * 60,
    )


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    ctx: Annotated[WalletContext, Depends(require_session)],
) -> None:
    session_store.discard(ctx.sid)
