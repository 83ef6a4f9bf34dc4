"""A simulated instrument living inside the transport.

Used by the tests, the packaged `mock` instrument and for trying out scripts
without hardware. Answers go through an outbox so they are delivered in order,
after `latency` seconds, cut into `chunk_size` pieces.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from scpilink.types import MockParameters

from .transport import CONN_ERROR, Transport


class MockTransport(Transport):
    type = "mock"
    parameters: MockParameters

    def __init__(self, host, parameters: MockParameters, loop=None):
        super().__init__(host, parameters, loop)
        self.written = bytearray()
        self.commands: list[str] = []
        self._responses = {k.upper(): v for k, v in parameters.responses.items()}
        self._line_buffer = bytearray()
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._pump: Optional[asyncio.Task] = None
        self._opening: Optional[asyncio.Handle] = None
        self._open = False

    def connect(self):
        if self.parameters.fail_connect:
            self.loop.call_soon(
                self.host.set_error, CONN_ERROR.REFUSED, "Mock instrument refused connection."
            )
            self.loop.call_soon(self.host.disconnected)
            return
        self._opening = self.loop.call_soon(self._on_open)

    def _on_open(self):
        self._opening = None
        self._open = True
        self._pump = self.loop.create_task(self._run_pump())
        self.host.connected()

    async def _run_pump(self):
        chunk_size = self.parameters.chunk_size
        while True:
            data = await self._outbox.get()
            if self.parameters.latency:
                await asyncio.sleep(self.parameters.latency)
            if chunk_size <= 0:
                self.host.on_data(data)
                continue
            for i in range(0, len(data), chunk_size):
                self.host.on_data(data[i : i + chunk_size])
                await asyncio.sleep(0)

    def _close(self):
        if not self._open:
            return
        self._open = False
        if self._pump is not None:
            self._pump.cancel()
            self._pump = None
        self.loop.call_soon(self.host.disconnected)

    def disconnect(self):
        if self._opening is not None:
            # disconnect before the link came up
            self._opening.cancel()
            self._opening = None
            self.loop.call_soon(self.host.disconnected)
            return
        if not self._open:
            logger.debug("Mock transport already closed.")
            return
        self._close()

    def write(self, data: bytes):
        if not self._open:
            raise ConnectionError("Mock instrument is not connected.")
        self.written.extend(data)
        self._line_buffer.extend(data)
        while (idx := self._line_buffer.find(b"\n")) >= 0:
            line = bytes(self._line_buffer[:idx]).decode("latin-1").strip()
            del self._line_buffer[: idx + 1]
            if line:
                self._answer(line)

    def _answer(self, command: str):
        self.commands.append(command)
        key = command.upper()
        if key == "*IDN?":
            if self.parameters.answer_idn:
                self.inject(self.parameters.idn + "\n")
            return
        if key in self._responses:
            self.inject(self._responses[key] + "\n")

    def inject(self, data: bytes | str):
        """Queue bytes as if the instrument had sent them."""
        if isinstance(data, str):
            data = data.encode("latin-1")
        self._outbox.put_nowait(bytes(data))

    def drop(self):
        """Close the link from the instrument's side."""
        if self._open:
            self.host.set_error(CONN_ERROR.CLOSED_BY_PEER, "Connection closed by instrument.")
            self._close()
