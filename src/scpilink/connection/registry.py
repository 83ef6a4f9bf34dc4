"""Per-context map from instrument id to its session.

The server keeps real `Connection`s here, a client's `ConnectionManager` keeps
`ConnectionProxy`s. Lookups may come from other threads (the client notification
listener), so every access takes the lock.
"""

from __future__ import annotations

import threading
from typing import Iterator, Optional

from loguru import logger

from .connection import ConnectionBase


class SessionRegistry:
    def __init__(self):
        self._sessions: dict[str, ConnectionBase] = {}
        self._lock = threading.Lock()

    def add(self, session: ConnectionBase) -> ConnectionBase:
        with self._lock:
            if session.instrument_id in self._sessions:
                raise ValueError(f"Session for {session.instrument_id} already registered")
            self._sessions[session.instrument_id] = session
        logger.debug("Registered session {}", session)
        return session

    def get(self, instrument_id: str) -> Optional[ConnectionBase]:
        with self._lock:
            return self._sessions.get(instrument_id)

    def __getitem__(self, instrument_id: str) -> ConnectionBase:
        with self._lock:
            return self._sessions[instrument_id]

    def __contains__(self, instrument_id: str) -> bool:
        with self._lock:
            return instrument_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __iter__(self) -> Iterator[ConnectionBase]:
        return iter(self.sessions())

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def sessions(self) -> list[ConnectionBase]:
        with self._lock:
            return list(self._sessions.values())

    def remove(self, instrument_id: str, destroy: bool = True) -> Optional[ConnectionBase]:
        """Drop a session (destroying it by default). Unknown ids return None."""
        with self._lock:
            session = self._sessions.pop(instrument_id, None)
        if session is None:
            logger.warning("No session registered for {}", instrument_id)
            return None
        if destroy:
            session.destroy()
        logger.debug("Removed session {}", session)
        return session

    def close_all(self, destroy: bool = True):
        for instrument_id in self.ids():
            self.remove(instrument_id, destroy=destroy)
