from __future__ import annotations

import pytest

from eduwallet.services import session_store as session_store_module
from eduwallet.services.session_store import SessionStore


class _FakeSession:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


def test_put_and_get() -> None:
    store = SessionStore(ttl_seconds=60)
    session = _FakeSession()
    sid = store.put(session)  # type: ignore[arg-type]
    assert store.get(sid) is session
    assert store.get("unknown") is None
    assert len(store) == 1


def test_discard_closes_the_session() -> None:
    store = SessionStore(ttl_seconds=60)
    session = _FakeSession()
    sid = store.put(session)  # type: ignore[arg-type]
    assert store.discard(sid) is True
    assert session.closed
    assert store.discard(sid) is False
    assert store.get(sid) is None


def test_expired_sessions_are_closed_on_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    now = [1000.0]
    monkeypatch.setattr(session_store_module.time, "monotonic", lambda: now[0])
    store = SessionStore(ttl_seconds=60)
    session = _FakeSession()
    sid = store.put(session)  # type: ignore[arg-type]

    now[0] += 61
    assert store.get(sid) is None
    assert session.closed
    assert len(store) == 0


def test_session_closed_elsewhere_is_dropped() -> None:
    store = SessionStore(ttl_seconds=60)
    session = _FakeSession()
    sid = store.put(session)  # type: ignore[arg-type]
    session.close()
    assert store.get(sid) is None
    assert len(store) == 0
