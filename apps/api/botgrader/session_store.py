"""
Session store for chunked analysis runs: SessionState keyed by session id.
Entries expire after a TTL of inactivity (refreshed on every put) so abandoned runs do not pile up.
A lease per session id enforces a single writer: one in-flight chunk request owns the session at a time.
In-process only; a shared deployment would back the same get/put/delete/acquire/release calls with an external keyed store.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Optional

from botgrader.schemas import SessionState

logger = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 15 * 60
DEFAULT_LEASE_TTL_SEC = 2 * 60


class SessionBusyError(RuntimeError):
    """Another chunk request currently holds the lease for this session."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is busy with another chunk request")
        self.session_id = session_id


class SessionStore:
    def __init__(
        self,
        ttl_sec: float = DEFAULT_TTL_SEC,
        lease_ttl_sec: float = DEFAULT_LEASE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_sec
        self._lease_ttl = lease_ttl_sec
        self._clock = clock
        self._data: dict[str, tuple[SessionState, float]] = {}
        self._leases: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            entry = self._data.get(session_id)
            if entry is None:
                return None
            state, expires = entry
            if self._clock() > expires:
                del self._data[session_id]
                logger.info("Session %s expired", session_id)
                return None
            return state

    def put(self, session_id: str, state: SessionState) -> None:
        with self._lock:
            self._purge_expired_locked()
            self._data[session_id] = (state, self._clock() + self._ttl)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)

    def acquire(self, session_id: str) -> str:
        """Take the write lease for session_id; raises SessionBusyError if someone else holds a live one."""
        with self._lock:
            now = self._clock()
            held = self._leases.get(session_id)
            if held is not None and now <= held[1]:
                raise SessionBusyError(session_id)
            if held is not None:
                logger.warning("Lease on session %s expired without release; taking over", session_id)
            token = uuid.uuid4().hex
            self._leases[session_id] = (token, now + self._lease_ttl)
            return token

    def release(self, session_id: str, token: str) -> None:
        with self._lock:
            held = self._leases.get(session_id)
            # A stale token (lease expired and taken over) must not free the new owner's lease
            if held is not None and held[0] == token:
                del self._leases[session_id]

    def is_leased(self, session_id: str) -> bool:
        with self._lock:
            held = self._leases.get(session_id)
            return held is not None and self._clock() <= held[1]

    def _purge_expired_locked(self) -> None:
        now = self._clock()
        expired = [k for k, (_, expires) in self._data.items() if now > expires]
        for k in expired:
            del self._data[k]
        if expired:
            logger.info("Purged %d expired session(s)", len(expired))

    def __contains__(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired_locked()
            return len(self._data)
