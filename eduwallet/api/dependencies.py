from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from eduwallet.ledger.client import ledger_gateway
from eduwallet.ledger.gateway import LedgerGateway
from eduwallet.services import token_service
from eduwallet.services.cache import cache_service
from eduwallet.services.counterparty_directory import CounterpartyDirectory
from eduwallet.services.identity_session import Session
from eduwallet.services.session_store import session_store

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer"}


@dataclass(frozen=True, slots=True)
class WalletContext:
    sid: str
    session: Session


def get_gateway() -> LedgerGateway:
    """Overridden in tests via app.dependency_overrides."""
    return ledger_gateway


def get_directory(
    gateway: Annotated[LedgerGateway, Depends(get_gateway)],
) -> CounterpartyDirectory:
    return CounterpartyDirectory(gateway, cache_service)


def require_session(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> WalletContext:
    """Resolve the bearer token to a live in-memory session, or 401."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers=_UNAUTHORIZED_HEADERS,
        )
    try:
        claims = token_service.decode_session_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.info("Expired session token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired",
            headers=_UNAUTHORIZED_HEADERS,
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid session token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers=_UNAUTHORIZED_HEADERS,
        ) from None

    session = session_store.get(claims["sid"])
    if session is None:
        # Valid signature, but the session was closed, expired or belongs
        # to a previous process.
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired",
            headers=_UNAUTHORIZED_HEADERS,
        )
    return WalletContext(sid=claims["sid"], session=session)
