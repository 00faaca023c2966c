# src/botprov/core/session_store.py
from __future__ import annotations
import secrets
import threading
import time
from typing import Callable, Dict, Optional, Protocol

from botprov.core.auth import InvalidSession, InvalidState
from botprov.core.models import Account, Session


class SessionStore(Protocol):
    """Key-value seam so a deployment can swap in a shared store."""
    def get(self, session_id: str) -> Optional[Session]: ...
    def set(self, session: Session) -> None: ...
    def delete(self, session_id: str) -> None: ...
    def purge_expired(self) -> int: ...
    def __len__(self) -> int: ...


class InMemorySessionStore:
    """
    Process-lifetime session map with per-key locks and sliding idle expiry.
    ttl_seconds <= 0 disables expiry. `on_expire` is called with each session
    dropped for idleness, outside the store's locks.
    """
    def __init__(self, ttl_seconds: int = 3600, clock: Callable[[], float] = time.time,
                 on_expire: Optional[Callable[[Session], None]] = None):
        self.ttl_seconds = ttl_seconds
        self.on_expire = on_expire
        self._clock = clock
        self._data: Dict[str, Session] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry = threading.Lock()  # guards the lock map and key membership

    def _lock_for(self, session_id: str, create: bool = True) -> Optional[threading.Lock]:
        with self._registry:
            lk = self._locks.get(session_id)
            if lk is None and create:
                lk = self._locks[session_id] = threading.Lock()
            return lk

    def _expired(self, s: Session, now: float) -> bool:
        return self.ttl_seconds > 0 and now - s.last_seen > self.ttl_seconds

    def _drop(self, session_id: str) -> Optional[Session]:
        with self._registry:
            self._locks.pop(session_id, None)
            return self._data.pop(session_id, None)

    def _expire(self, session: Session) -> None:
        if self.on_expire is not None:
            self.on_expire(session)

    def get(self, session_id: str) -> Optional[Session]:
        # never mint a lock for an id this store did not issue
        lk = self._lock_for(session_id, create=False) if session_id else None
        if lk is None:
            return None
        with lk:
            s = self._data.get(session_id)
            if s is None:
                return None
            now = self._clock()
            if not self._expired(s, now):
                s.last_seen = now
                return s
            dropped = self._drop(session_id)
        if dropped is not None:
            self._expire(dropped)
        return None

    def set(self, session: Session) -> None:
        with self._lock_for(session.session_id):
            session.last_seen = self._clock()
            self._data[session.session_id] = session

    def delete(self, session_id: str) -> None:
        lk = self._lock_for(session_id, create=False)
        if lk is None:
            return
        with lk:
            self._drop(session_id)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._registry:
            ids = list(self._data.keys())
        dropped = []
        for sid in ids:
            lk = self._lock_for(sid, create=False)
            if lk is None:
                continue
            with lk:
                s = self._data.get(sid)
                if s is not None and self._expired(s, now):
                    dropped.append(self._drop(sid))
        for s in dropped:
            self._expire(s)
        return len(dropped)

    def lock_count(self) -> int:
        with self._registry:
            return len(self._locks)

    def __len__(self) -> int:
        return len(self._data)


class PendingStates:
    """
    OAuth `state` values handed out by start_auth, each redeemable once
    within `ttl_seconds`.
    """
    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._issued: Dict[str, float] = {}
        self._lock = threading.Lock()

    def issue(self) -> str:
        state = secrets.token_urlsafe(24)
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._issued[state] = now
        return state

    def consume(self, state: Optional[str]) -> None:
        now = self._clock()
        with self._lock:
            issued_at = self._issued.pop(state, None) if state else None
            self._prune(now)
        if issued_at is None or now - issued_at > self.ttl_seconds:
            raise InvalidState("Sign-in state missing, unknown or expired.")

    def _prune(self, now: float) -> None:
        stale = [k for k, t in self._issued.items() if now - t > self.ttl_seconds]
        for k in stale:
            del self._issued[k]

    def __len__(self) -> int:
        return len(self._issued)


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def open_session(store: SessionStore, account: Account) -> Session:
    s = Session(session_id=new_session_id(), account=account)
    store.set(s)
    return s


def require_session(store: SessionStore, session_id: str) -> Session:
    s = store.get(session_id)
    if s is None:
        raise InvalidSession("Invalid session")
    return s
