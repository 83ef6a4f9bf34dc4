# -*- coding: utf-8 -*-
"""# scpilink Documentation

`SCPI instrument session engine`

A (python) library for holding live sessions with SCPI measurement instruments over
ethernet or serial links, and for sharing those sessions between processes via a
small session server.

The pieces, leaves first:

- [Transports](transport.html): ethernet (asyncio streams), serial (pyserial) and an
  in-process mock instrument.
- [Connection](connection.html): the session state machine. Frames the byte stream into
  response lines, runs the `*IDN?` handshake, carries binary block transfers
  (uploads and downloads) and hands the session to one owner at a time.
- [Server](server.html): owns the real connections and exposes them over zmq.
  `ConnectionManager` gives client processes `ConnectionProxy` objects that mirror
  the server-side sessions.
- [CLI](cli.html): `scpilink server`, `scpilink query`, `scpilink instruments` etc.

Examples
--------
In-process session with the mock instrument:
```python
import asyncio
from scpilink.connection import Connection
from scpilink.instrument import Instrument
from scpilink.types import MockParameters

async def main():
    inst = Instrument("mock", connection_parameters=MockParameters())
    conn = Connection(inst)
    conn.connect()
    ...

asyncio.run(main())
```
"""

from ._version import __version__
