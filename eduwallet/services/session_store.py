from __future__ import annotations

import logging
import secrets
import time

from eduwallet.core.config import SETTINGS
from eduwallet.services.identity_session import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Process-local map of session id -> live Session.

    Never serialized and never shared: a signing identity must not leave
    the process that derived it.  Expired entries are closed lazily on
    lookup.
    """

    def __init__(self, ttl_seconds: float) -> None:
        self._ttl = ttl_seconds
        self._sessions: dict[str, tuple[Session, float]] = {}

    def put(self, session: Session) -> str:
        sid = secrets.token_urlsafe(24)
        self._sessions[sid] = (session, time.monotonic() + self._ttl)
        return sid

    def get(self, sid: str) -> Session | None:
        entry = self._sessions.get(sid)
        if entry is None:
            return None
        session, expires_at = entry
        if time.monotonic() >= expires_at or session.closed:
            self.discard(sid)
            return None
        return session

    def discard(self, sid: str) -> bool:
        entry = self._sessions.pop(sid, None)
        if entry is None:
            return False
        entry[0].close()
        return True

    def clear(self) -> None:
        for sid in list(self._sessions):
            self.discard(sid)

    def __len__(self) -> int:
        return len(self._sessions)


session_store = SessionStore(ttl_seconds=SETTINGS.session_ttl_minutes * 60)
