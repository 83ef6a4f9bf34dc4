"""Instrument sessions: the connection state machine and its helpers.

- `Connection`: the real session, owning transport, framer and long operation
- `ConnectionBase`: the interface shared with `scpilink.server.ConnectionProxy`
- `SessionRegistry`: instrument id -> session, one per context
"""

from .connection import CONN_STATE, Connection, ConnectionBase
from .framer import Framer
from .long_operation import (
    LONG_OP,
    LONG_OP_STATE,
    FileDownload,
    FileUpload,
    LongOperation,
    encode_block,
)
from .registry import SessionRegistry

__all__ = [
    "CONN_STATE",
    "Connection",
    "ConnectionBase",
    "encode_block",
    "FileDownload",
    "FileUpload",
    "Framer",
    "LONG_OP",
    "LONG_OP_STATE",
    "LongOperation",
    "SessionRegistry",
]
