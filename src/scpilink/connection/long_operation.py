"""Binary bulk transfers overlaid on the line protocol.

Both directions use IEEE 488.2 definite-length blocks: `#`, one digit N, N digits
giving the payload length L, then L payload bytes. `#0` starts an indefinite block
that runs to the next `\\n`.

A connection has at most one long operation at a time. It feeds received bytes to
`on_data` and polls `is_done()` from its housekeeping task; once done, whatever
the operation did not consume is left in `data_surplus` to be framed as ordinary
lines.
"""

from __future__ import annotations

import asyncio
import pathlib
import time
import types
from typing import TYPE_CHECKING, Optional

from loguru import logger

from scpilink.types import DownloadInstructions, LongOperationError

if TYPE_CHECKING:
    from .connection import Connection

BLOCK_MARKER = b"#"

LONG_OP = types.SimpleNamespace()
LONG_OP.UPLOAD = "upload"
LONG_OP.DOWNLOAD = "download"

LONG_OP_STATE = types.SimpleNamespace()
LONG_OP_STATE.RUNNING = "running"
LONG_OP_STATE.DONE = "done"
LONG_OP_STATE.ERROR = "error"
LONG_OP_STATE.ABORTED = "aborted"


def encode_block(payload: bytes) -> bytes:
    """Wrap a payload in definite-length block notation."""
    digits = str(len(payload))
    if len(digits) > 9:
        raise ValueError("Payload too large for a definite-length block.")
    return BLOCK_MARKER + str(len(digits)).encode() + digits.encode() + payload


class LongOperation:
    kind: str = ""
    is_file_transfer: bool = True

    def __init__(self, connection: Connection):
        self.connection = connection
        self.state = LONG_OP_STATE.RUNNING
        self.error: Optional[str] = None
        self.expected_length: Optional[int] = None
        self.transferred = 0
        self.data_surplus: Optional[bytes] = None
        self.result: Optional[bytes] = None
        self.started = time.time()

    @property
    def failed(self) -> bool:
        return self.state == LONG_OP_STATE.ERROR

    @property
    def description(self) -> str:
        return ""

    @property
    def log_entry(self) -> dict:
        return {
            "direction": self.kind,
            "state": self.state,
            "dataLength": self.transferred,
            "expectedLength": self.expected_length,
            "description": self.description,
            "error": self.error,
            "duration": time.time() - self.started,
        }

    def start(self):
        pass

    def on_data(self, data: bytes):
        raise NotImplementedError()

    def is_done(self) -> bool:
        raise NotImplementedError()

    def abort(self):
        raise NotImplementedError()

    def _add_surplus(self, data: bytes):
        if data:
            self.data_surplus = (self.data_surplus or b"") + data

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(state={self.state}, "
            f"{self.transferred}/{self.expected_length} bytes)"
        )


class FileUpload(LongOperation):
    """Instrument -> client block, parsed as it streams in.

    The first chunk (starting with `#`) is passed to the constructor. Header digits
    may arrive split over several chunks. A malformed header fails the upload and
    hands the raw bytes back as surplus.
    """

    kind = LONG_OP.UPLOAD

    def __init__(self, connection: Connection, data: bytes = b""):
        super().__init__(connection)
        self._header = bytearray()
        self._payload = bytearray()
        self._indefinite = False
        if data:
            self.on_data(data)

    @property
    def description(self) -> str:
        return "block from instrument"

    def is_done(self) -> bool:
        return self.state != LONG_OP_STATE.RUNNING

    def abort(self):
        if self.state == LONG_OP_STATE.RUNNING:
            self.state = LONG_OP_STATE.ABORTED

    def on_data(self, data: bytes):
        if self.is_done():
            self._add_surplus(data)
            return
        if self.expected_length is None and not self._indefinite:
            data = self._parse_header(data)
            if data is None:
                return
        self._take_payload(data)

    def _parse_header(self, data: bytes) -> Optional[bytes]:
        """Returns the bytes following a complete header, None while incomplete."""
        self._header.extend(data)
        if len(self._header) < 2:
            return None
        width_digit = bytes(self._header[1:2])
        if self._header[:1] != BLOCK_MARKER or not width_digit.isdigit():
            self._fail("Malformed block header.")
            return None
        width = int(width_digit)
        if width == 0:
            self._indefinite = True
            return bytes(self._header[2:])
        if len(self._header) < 2 + width:
            return None
        digits = bytes(self._header[2 : 2 + width])
        if not digits.isdigit():
            self._fail("Malformed block length.")
            return None
        self.expected_length = int(digits)
        logger.debug("Receiving block of {} bytes", self.expected_length)
        return bytes(self._header[2 + width :])

    def _take_payload(self, data: bytes):
        if self._indefinite:
            idx = data.find(b"\n")
            if idx < 0:
                self._payload.extend(data)
            else:
                self._payload.extend(data[:idx])
                self._finish(data[idx + 1 :])
        else:
            needed = self.expected_length - len(self._payload)
            self._payload.extend(data[:needed])
            if len(self._payload) >= self.expected_length:
                self._finish(data[needed:])
        self.transferred = len(self._payload)

    def _finish(self, surplus: bytes):
        self.state = LONG_OP_STATE.DONE
        self.result = bytes(self._payload)
        self._add_surplus(surplus)

    def _fail(self, message: str):
        logger.error("Upload failed: {} Header: {!r}", message, bytes(self._header))
        self.state = LONG_OP_STATE.ERROR
        self.error = message
        self._add_surplus(bytes(self._header))


class FileDownload(LongOperation):
    """Client -> instrument transfer driven by `DownloadInstructions`.

    An asyncio task sends the start command, every chunk as
    `<chunk command><block>\\n` and the finish command. Bytes the instrument sends
    meanwhile are kept as surplus.
    """

    kind = LONG_OP.DOWNLOAD

    def __init__(self, connection: Connection, instructions: DownloadInstructions):
        super().__init__(connection)
        self.instructions = instructions
        self.payload = self._load_payload(instructions)
        self.expected_length = len(self.payload)
        self._task: Optional[asyncio.Task] = None

    @staticmethod
    def _load_payload(instructions: DownloadInstructions) -> bytes:
        if instructions.data is not None:
            return bytes(instructions.data)
        if not instructions.source_file_path:
            raise LongOperationError("no data to download")
        try:
            return pathlib.Path(instructions.source_file_path).read_bytes()
        except OSError as e:
            raise LongOperationError(f"cannot read {instructions.source_file_path}: {e}")

    @property
    def description(self) -> str:
        return self.instructions.description or self.instructions.destination_file_path

    def _fill(self, template: str) -> str:
        return template.replace("<path>", self.instructions.destination_file_path).replace(
            "<size>", str(len(self.payload))
        )

    def start(self):
        self._task = self.connection.loop.create_task(self._run())

    async def _run(self):
        ins = self.instructions
        chunk_command = ins.send_chunk_command_template.encode("latin-1")
        size = max(ins.chunk_size, 1)
        try:
            if ins.start_command_template:
                self._send(ins.start_command_template)
            for offset in range(0, len(self.payload), size):
                chunk = self.payload[offset : offset + size]
                self.connection.write_raw(chunk_command + encode_block(chunk) + b"\n")
                self.transferred += len(chunk)
                await asyncio.sleep(ins.chunk_interval)
            if ins.finish_command_template:
                self._send(ins.finish_command_template)
            self.state = LONG_OP_STATE.DONE
            logger.info("Download of {} bytes complete", self.transferred)
        except asyncio.CancelledError:
            self.state = LONG_OP_STATE.ABORTED
            raise
        except Exception as e:
            logger.exception("Download failed after {} bytes.", self.transferred)
            self.state = LONG_OP_STATE.ERROR
            self.error = str(e)

    def _send(self, template: str):
        if not self.connection.send(self._fill(template), long_operation=True):
            raise LongOperationError("could not send command")

    def is_done(self) -> bool:
        return self._task is not None and self._task.done()

    def on_data(self, data: bytes):
        self._add_surplus(data)

    def abort(self):
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        self.state = LONG_OP_STATE.ABORTED
        if self.instructions.abort_command_template and self.connection.is_connected:
            self.connection.send(
                self._fill(self.instructions.abort_command_template), long_operation=True
            )
