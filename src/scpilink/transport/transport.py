"""Base class for byte-stream transports.

A transport moves raw bytes to and from one instrument. It knows nothing about
lines, blocks or SCPI: it reports link events to its host (a `TransportHost`,
normally the owning `Connection`) and always does so on the host's event loop.
"""

from __future__ import annotations

import asyncio
import types
from typing import Optional

from scpilink.types import ConnectionParameters, TransportHost

CONN_ERROR = types.SimpleNamespace()
CONN_ERROR.NONE = "none"
# reported by transports
CONN_ERROR.CLOSED_BY_PEER = "closed_by_peer"
CONN_ERROR.NOT_FOUND = "not_found"
CONN_ERROR.REFUSED = "refused"
CONN_ERROR.UNKNOWN = "unknown"
# reported by the connection itself
CONN_ERROR.IDN_TIMEOUT = "idn_timeout"
CONN_ERROR.INVALID_IDN = "invalid_idn"
CONN_ERROR.LONG_OPERATION = "long_operation"


class Transport:
    """One physical link to an instrument.

    Subclasses implement `connect`, `disconnect` and `write`. After `connect()`
    the host eventually gets exactly one `disconnected()` call, preceded by
    `connected()` if the link came up and by `set_error()` if it failed.
    """

    type: str = "base"

    def __init__(
        self,
        host: TransportHost,
        parameters: ConnectionParameters,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.host = host
        self.parameters = parameters
        self.loop = loop or asyncio.get_running_loop()

    def connect(self):
        raise NotImplementedError()

    def disconnect(self):
        raise NotImplementedError()

    def write(self, data: bytes):
        raise NotImplementedError()

    def __repr__(self):
        return f"{self.__class__.__name__}({self.parameters.describe()})"
