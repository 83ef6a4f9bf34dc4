"""In-memory activity log, optionally mirrored to a JSON-lines file.

Connections record every request, answer, connect, disconnect and file transfer
here. Recording never raises into the caller: file errors are logged and the entry
is still kept in memory.
"""

from __future__ import annotations

import itertools
import pathlib
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

import simplejson as json
from loguru import logger
from mashumaro.mixins.msgpack import DataClassMessagePackMixin

ACTIVITY = {
    "CONNECTED": "instrument/connected",
    "CONNECT_FAILED": "instrument/connect-failed",
    "DISCONNECTED": "instrument/disconnected",
    "REQUEST": "instrument/request",
    "ANSWER": "instrument/answer",
    "FILE": "instrument/file",
}


@dataclass(kw_only=True)
class ActivityLogEntry(DataClassMessagePackMixin):
    oid: str  # instrument id
    type: str
    message: str = ""
    data: Optional[bytes] = None
    id: str = ""
    date: float = field(default_factory=time.time)


class ActivityLog:
    def __init__(self, path: Optional[str] = None, max_entries: int = 10000):
        self.path = pathlib.Path(path) if path else None
        self._entries: deque[ActivityLogEntry] = deque(maxlen=max_entries)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def record(self, entry: ActivityLogEntry) -> str:
        with self._lock:
            entry.id = str(next(self._ids))
            self._entries.append(entry)
        logger.trace("*ACTIVITY* [{}] {} {}", entry.oid, entry.type, entry.message.strip())
        if self.path is not None:
            self._append_to_file(entry)
        return entry.id

    def _append_to_file(self, entry: ActivityLogEntry):
        line = {
            "id": entry.id,
            "oid": entry.oid,
            "type": entry.type,
            "message": entry.message,
            "dataLength": len(entry.data) if entry.data is not None else None,
            "date": entry.date,
        }
        try:
            with self.path.open("a") as f:
                f.write(json.dumps(line) + "\n")
        except OSError:
            logger.exception("Could not write activity entry to {}.", self.path)

    def entries(
        self, oid: Optional[str] = None, type: Optional[str] = None
    ) -> list[ActivityLogEntry]:
        with self._lock:
            return [
                e
                for e in self._entries
                if (oid is None or e.oid == oid) and (type is None or e.type == type)
            ]

    def last(self, oid: Optional[str] = None) -> Optional[ActivityLogEntry]:
        found = self.entries(oid)
        return found[-1] if found else None

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)


def dumps_message(**kwargs: Any) -> str:
    """JSON message body for activity entries."""
    return json.dumps(kwargs)
