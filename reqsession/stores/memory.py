"""In-process session store.

Data lives in a dict guarded by a single lock and is lost on restart.
Suitable for tests and single-instance deployments.
"""

import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, Optional

from reqsession.stores.base import Store

logger = logging.getLogger(__name__)


class MemoryStore(Store):
    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: Optional[float] = None,
    ):
        """
        Args:
            ttl_seconds: Idle lifetime of a session; every write extends it.
                None keeps sessions until cleared.
            clock: Monotonic time source (injectable for tests)
            sweep_interval: Minimum seconds between full sweeps of expired
                sessions on write. Defaults to the TTL, capped at 60 seconds.
        """
        self.ttl_seconds = ttl_seconds
        if sweep_interval is None and ttl_seconds is not None:
            sweep_interval = min(ttl_seconds, 60)
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._lock = Lock()
        self._sessions: Dict[str, Dict[str, bytes]] = {}
        self._expires: Dict[str, float] = {}
        self._next_sweep = 0.0

    def _drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._expires.pop(session_id, None)

    def _live(self, session_id: str) -> Optional[Dict[str, bytes]]:
        """Return the session's mapping, dropping it first if expired. Caller holds the lock."""
        expires_at = self._expires.get(session_id)
        if expires_at is not None and self._clock() >= expires_at:
            self._drop(session_id)
            logger.debug("Expired in-memory session dropped")
            return None
        return self._sessions.get(session_id)

    def _sweep(self) -> int:
        """Drop every expired session. Caller holds the lock."""
        now = self._clock()
        expired = [sid for sid, expires_at in self._expires.items() if now >= expires_at]
        for session_id in expired:
            self._drop(session_id)
        if self.sweep_interval is not None:
            self._next_sweep = now + self.sweep_interval
        if expired:
            logger.debug(f"Swept {len(expired)} expired in-memory sessions")
        return len(expired)

    def _release_if_empty(self, session_id: str, values: Dict[str, bytes]) -> None:
        if not values:
            self._drop(session_id)

    def read(self, session_id: str, key: str) -> Optional[bytes]:
        with self._lock:
            values = self._live(session_id)
            if values is None:
                return None
            return values.get(key)

    def write(self, session_id: str, key: str, data: bytes) -> None:
        with self._lock:
            if self.sweep_interval is not None and self._clock() >= self._next_sweep:
                self._sweep()
            values = self._live(session_id)
            if values is None:
                values = self._sessions[session_id] = {}
            values[key] = bytes(data)
            if self.ttl_seconds is not None:
                self._expires[session_id] = self._clock() + self.ttl_seconds

    def delete(self, session_id: str, key: str) -> None:
        with self._lock:
            values = self._live(session_id)
            if values is not None:
                values.pop(key, None)
                self._release_if_empty(session_id, values)

    def read_all(self, session_id: str) -> Dict[str, bytes]:
        with self._lock:
            return dict(self._live(session_id) or {})

    def take(self, session_id: str, key: str) -> Optional[bytes]:
        with self._lock:
            values = self._live(session_id)
            if values is None:
                return None
            data = values.pop(key, None)
            self._release_if_empty(session_id, values)
            return data

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._drop(session_id)

    def purge_expired(self) -> int:
        """
        Drop every expired session now.

        Returns:
            Number of sessions removed
        """
        with self._lock:
            return self._sweep()

    def health(self) -> Dict[str, Any]:
        with self._lock:
            self._sweep()
            session_count = len(self._sessions)
        return {
            "status": "healthy",
            "type": "memory",
            "message": "In-memory storage active",
            "sessions": session_count,
        }
