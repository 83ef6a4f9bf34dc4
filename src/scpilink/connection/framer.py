"""Turns a stream of byte chunks into response lines.

Lines end at `\\n` (the terminator stays part of the line). Bytes left over after
the last terminator wait in the buffer; if nothing else arrives within
`combine_if_below` seconds they are flushed as a line of their own, so an answer
missing its terminator is still delivered.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from loguru import logger

TERMINATOR = b"\n"


class Framer:
    def __init__(
        self,
        on_line: Callable[[bytes], None],
        combine_if_below: float,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.on_line = on_line
        self.combine_if_below = combine_if_below
        self.loop = loop or asyncio.get_running_loop()
        self._buffer = bytearray()
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def is_empty(self) -> bool:
        return not self._buffer

    @property
    def buffered(self) -> bytes:
        return bytes(self._buffer)

    def cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def feed(self, chunk: bytes):
        """Append a chunk and dispatch every completed line, in order."""
        self.cancel_timer()
        self._buffer.extend(chunk)

        lines = []
        while (idx := self._buffer.find(TERMINATOR)) >= 0:
            lines.append(bytes(self._buffer[: idx + 1]))
            del self._buffer[: idx + 1]

        # arm before dispatching: a line handler may feed or reset us
        if self._buffer:
            self._timer = self.loop.call_later(self.combine_if_below, self._on_timer)

        for line in lines:
            self.on_line(line)

    def _on_timer(self):
        self._timer = None
        if self._buffer:
            logger.trace("Flushing unterminated data: {!r}", bytes(self._buffer))
            self.on_line(self.flush())

    def flush(self) -> bytes:
        """Empty the buffer and return what was in it."""
        self.cancel_timer()
        data = bytes(self._buffer)
        self._buffer.clear()
        return data

    def reset(self) -> bytes:
        """Discard buffered bytes, returning them (for logging)."""
        return self.flush()
