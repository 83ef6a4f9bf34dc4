"""The instrument session state machine.

A `Connection` owns the transport, the framer and the active long operation of one
instrument. Every mutation happens on its event loop: transport events, timer
callbacks, the housekeeping task and direct calls from the owning context. Each
change of `(state, error_code, error)` is published as a `ConnectionStatusUpdate`
carrying an increasing `seq`, which is what proxies in other processes mirror.

States cycle IDLE -> CONNECTING -> CONNECTED -> DISCONNECTING -> IDLE. Calling an
operation in the wrong state is a local fault: it is logged and nothing changes.
"""

from __future__ import annotations

import asyncio
import itertools
import time
import types
from functools import partial
from typing import Any, Callable, Optional

from loguru import logger

from scpilink.instrument import Instrument
from scpilink.transport import CONN_ERROR, Transport, create_transport
from scpilink.types import (
    ActivityLogProtocol,
    ConnectionParameters,
    ConnectionStatusUpdate,
    ConnectionTimings,
    DownloadInstructions,
    FileTransferInProgressError,
    LongOperationError,
    NotConnectedError,
    OperationInProgressError,
    ValueParser,
)
from scpilink.util.activity_log import ACTIVITY, ActivityLog, ActivityLogEntry, dumps_message
from scpilink.util.scpi import ERROR_PREFIX, ScpiValueParser

from .framer import Framer
from .long_operation import BLOCK_MARKER, FileDownload, FileUpload, LongOperation

CONN_STATE = types.SimpleNamespace()
CONN_STATE.IDLE = "idle"
CONN_STATE.CONNECTING = "connecting"
CONN_STATE.CONNECTED = "connected"
CONN_STATE.DISCONNECTING = "disconnecting"

IDN_QUERY = "*IDN?"

ValueCallback = Callable[[Any], None]


class ConnectionBase:
    """Public contract shared by `Connection` and `ConnectionProxy`."""

    def __init__(self, instrument_id: str):
        self.instrument_id = instrument_id
        self.state: str = CONN_STATE.IDLE
        self.error_code: str = CONN_ERROR.NONE
        self.error: Optional[str] = None

    @property
    def is_idle(self) -> bool:
        return self.state == CONN_STATE.IDLE

    @property
    def is_connected(self) -> bool:
        return self.state == CONN_STATE.CONNECTED

    @property
    def is_transition_state(self) -> bool:
        return self.state in (CONN_STATE.CONNECTING, CONN_STATE.DISCONNECTING)

    @property
    def status(self) -> dict:
        return {"state": self.state, "error_code": self.error_code, "error": self.error}

    def connect(self, parameters: Optional[ConnectionParameters] = None):
        raise NotImplementedError()

    def disconnect(self):
        raise NotImplementedError()

    def destroy(self):
        raise NotImplementedError()

    def send(self, command: str, log: bool = True, long_operation: bool = False):
        raise NotImplementedError()

    def download(self, instructions: DownloadInstructions):
        raise NotImplementedError()

    def abort_long_operation(self):
        raise NotImplementedError()

    def dismiss_error(self):
        raise NotImplementedError()

    def acquire(
        self,
        owner: str,
        trace_enabled: bool = True,
        callback: Optional[ValueCallback] = None,
    ) -> Optional[str]:
        raise NotImplementedError()

    def release(self, owner: Optional[str] = None):
        raise NotImplementedError()

    def __repr__(self):
        return f"{self.__class__.__name__}({self.instrument_id}, {self.state})"


class Connection(ConnectionBase):
    """The real session, living in the process that owns the transport.

    Parameters
    ----------
    instrument : Instrument
        The instrument this session talks to. Receives the IDN, the last
        connection parameters and download instructions.
    activity_log : ActivityLogProtocol, optional
        Where requests, answers and lifecycle events are recorded.
    value_parser : ValueParser, optional
        Classifies each received line, by default `ScpiValueParser`.
    value_sink : callable, optional
        Receives parsed values while nobody has acquired the connection.
    status_publisher : callable, optional
        Called with a `ConnectionStatusUpdate` on every status change.
    timings : ConnectionTimings, optional
        Housekeeping interval, IDN timeout and coalescing delay.
    loop : asyncio.AbstractEventLoop, optional
        Defaults to the running loop.
    seq_source : callable, optional
        Returns the next status sequence number. A server shares one source
        between all its sessions, so a re-created session for an instrument
        never publishes a `seq` below its predecessor's.
    """

    def __init__(
        self,
        instrument: Instrument,
        activity_log: Optional[ActivityLogProtocol] = None,
        value_parser: Optional[ValueParser] = None,
        value_sink: Optional[ValueCallback] = None,
        status_publisher: Optional[Callable[[ConnectionStatusUpdate], None]] = None,
        timings: Optional[ConnectionTimings] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        seq_source: Optional[Callable[[], int]] = None,
    ):
        super().__init__(instrument.id)
        self.instrument = instrument
        self.activity_log = activity_log if activity_log is not None else ActivityLog()
        self.value_parser = value_parser or ScpiValueParser()
        self.value_sink = value_sink
        self.status_publisher = status_publisher
        self.timings = timings or ConnectionTimings()
        self.loop = loop or asyncio.get_running_loop()

        self.transport: Optional[Transport] = None
        self.framer = Framer(self._on_line_received, self.timings.combine_if_below, self.loop)
        self.long_operation: Optional[LongOperation] = None
        self.connected_since: Optional[float] = None
        self.trace_enabled = True
        self.exclusive_owner: Optional[str] = None
        self.seq = 0
        self._next_seq = seq_source or itertools.count(1).__next__

        self._owner_callback: Optional[ValueCallback] = None
        self._connection_parameters: Optional[ConnectionParameters] = None
        self._was_connected = False
        self._idn_expected = False
        self._idn_timer: Optional[asyncio.TimerHandle] = None
        self._housekeeping: Optional[asyncio.Task] = None
        self._destroy_pending = False

        if instrument.auto_connect and instrument.connection_parameters is not None:
            logger.info("Auto-connecting to {}", self.instrument_id)
            self.connect()

    # ------------------------------------------------------------------
    # status

    def _update(self, **changes):
        changed = False
        for name, value in changes.items():
            if getattr(self, name) != value:
                setattr(self, name, value)
                changed = True
        if not changed:
            return
        self.seq = self._next_seq()
        logger.debug(
            "Connection {} -> {} (error: {} {})",
            self.instrument_id,
            self.state,
            self.error_code,
            self.error,
        )
        if self.status_publisher is not None:
            self.status_publisher(self.status_update())

    def status_update(self) -> ConnectionStatusUpdate:
        return ConnectionStatusUpdate(
            instrument_id=self.instrument_id,
            state=self.state,
            error_code=self.error_code,
            error=self.error,
            seq=self.seq,
        )

    def set_error(self, error_code: str, error: Optional[str] = None):
        if error_code != CONN_ERROR.NONE:
            logger.warning("Connection {} error {}: {}", self.instrument_id, error_code, error)
        self._update(error_code=error_code, error=error)

    def dismiss_error(self):
        self._update(error=None)

    # ------------------------------------------------------------------
    # activity

    def _record(self, type: str, message: str = "", data: Optional[bytes] = None) -> str:
        entry = ActivityLogEntry(oid=self.instrument_id, type=type, message=message, data=data)
        try:
            return self.activity_log.record(entry)
        except Exception:
            logger.exception("Activity log failed to record {}.", type)
            return ""

    def _log_request(self, command: str):
        if self.trace_enabled:
            self._record(ACTIVITY["REQUEST"], command)

    def _log_answer(self, answer: str):
        if self.trace_enabled:
            self._record(ACTIVITY["ANSWER"], answer)

    # ------------------------------------------------------------------
    # connect / disconnect

    def connect(self, parameters: Optional[ConnectionParameters] = None):
        if not self.is_idle:
            logger.error("Connect {}: invalid in state {}.", self.instrument_id, self.state)
            return
        if parameters is not None:
            self.instrument.set_connection_parameters(parameters)
        params = self.instrument.connection_parameters
        if params is None:
            logger.error("Connect {}: no connection parameters.", self.instrument_id)
            return
        try:
            transport = create_transport(self, params, self.loop)
        except ValueError:
            logger.exception("Connect {}: cannot create transport.", self.instrument_id)
            return

        logger.info("Connecting to {} via {}", self.instrument_id, transport)
        self.transport = transport
        self._connection_parameters = params
        self._was_connected = False
        self._update(state=CONN_STATE.CONNECTING, error_code=CONN_ERROR.NONE, error=None)
        transport.connect()

    def connected(self):
        if self.state != CONN_STATE.CONNECTING:
            logger.error("Transport connected while {} is {}.", self.instrument_id, self.state)
            return
        self._update(state=CONN_STATE.CONNECTED)
        self._record(
            ACTIVITY["CONNECTED"],
            dumps_message(connectionParameters=self._connection_parameters.to_dict()),
        )
        self._was_connected = True
        self.connected_since = time.time()

        self._send_idn()
        self._housekeeping = self.loop.create_task(self._run_housekeeping())

    def disconnect(self):
        if self.state in (CONN_STATE.IDLE, CONN_STATE.DISCONNECTING):
            logger.error("Disconnect {}: invalid in state {}.", self.instrument_id, self.state)
            return
        logger.info("Disconnecting from {}", self.instrument_id)
        self._update(state=CONN_STATE.DISCONNECTING)
        self.transport.disconnect()

    def disconnected(self):
        if self.is_idle:
            logger.debug("Transport of {} disconnected while idle.", self.instrument_id)
            return

        if self.long_operation is not None:
            self._finish_long_operation(abort=True)

        self.framer.cancel_timer()
        self._cancel_idn_timer()
        self._idn_expected = False
        if self._housekeeping is not None:
            self._housekeeping.cancel()
            self._housekeeping = None

        rest = self.framer.flush()
        if rest:
            self._dispatch_line(rest.decode("latin-1"), handshake=False)

        if self._was_connected:
            self._record(
                ACTIVITY["DISCONNECTED"],
                dumps_message(duration=time.time() - self.connected_since, error=self.error),
            )
            self.instrument.last_connected = time.time()
        else:
            self._record(
                ACTIVITY["CONNECT_FAILED"],
                dumps_message(
                    connectionParameters=self._connection_parameters.to_dict()
                    if self._connection_parameters
                    else None,
                    error=self.error,
                ),
            )

        self.transport = None
        self.connected_since = None
        self._was_connected = False
        self._update(state=CONN_STATE.IDLE)
        logger.info("Disconnected from {}", self.instrument_id)
        if self._destroy_pending:
            self._detach()

    def destroy(self):
        """Disconnect, drop the owner and stop publishing.

        A session that is not idle keeps publishing until it reaches IDLE, so
        mirrors see the final state.
        """
        self.exclusive_owner = None
        self._owner_callback = None
        if self.is_idle:
            self._detach()
            return
        self._destroy_pending = True
        if self.state != CONN_STATE.DISCONNECTING:
            self.disconnect()

    def _detach(self):
        self.status_publisher = None
        self.value_sink = None
        self._destroy_pending = False
        logger.debug("Connection {} destroyed.", self.instrument_id)

    # ------------------------------------------------------------------
    # identification

    def _send_idn(self):
        self.send(IDN_QUERY)
        self._flush_data()
        self._idn_expected = True
        self._idn_timer = self.loop.call_later(
            self.timings.idn_expected_timeout, self._on_idn_timeout
        )

    def _flush_data(self):
        if self.long_operation is not None:
            self.long_operation.abort()
            self.long_operation = None
        discarded = self.framer.reset()
        if discarded:
            self._log_answer(discarded.decode("latin-1"))

    def _cancel_idn_timer(self):
        if self._idn_timer is not None:
            self._idn_timer.cancel()
            self._idn_timer = None

    def _on_idn_timeout(self):
        self._idn_timer = None
        if not self._idn_expected:
            return
        self._idn_expected = False
        self.set_error(CONN_ERROR.IDN_TIMEOUT, "Timeout (no response to IDN query).")
        self.disconnect()

    # ------------------------------------------------------------------
    # receiving

    def on_data(self, data: bytes):
        self.framer.cancel_timer()

        if self.long_operation is not None:
            self.long_operation.on_data(data)
        elif self.framer.is_empty and data.startswith(BLOCK_MARKER):
            self.long_operation = FileUpload(self, data)
        else:
            self.framer.feed(data)
            return

        if self.long_operation.is_done():
            self._finish_long_operation()

    def _on_line_received(self, raw: bytes):
        self._dispatch_line(raw.decode("latin-1"))

    def _dispatch_line(self, line: str, handshake: bool = True):
        logger.debug("*ANSWER* [{}] {!r}", self.instrument_id, line)
        self._log_answer(line)

        value = self.value_parser.parse(line)
        self._send_value(value)

        if handshake and self._idn_expected:
            self._cancel_idn_timer()
            self._idn_expected = False
            if not isinstance(value, str):
                self.set_error(CONN_ERROR.INVALID_IDN, "Invalid IDN value.")
                self.disconnect()
            else:
                self.instrument.set_idn(value)

    def _send_value(self, value: Any):
        target = self._owner_callback or self.value_sink
        if target is None:
            return
        try:
            target(value)
        except Exception:
            logger.exception("Value callback of {} failed.", self.instrument_id)

    def _synthetic_error(self, message: str):
        logger.warning("{} rejected: {}", self.instrument_id, message)
        self._dispatch_line(f"{ERROR_PREFIX}: {message}\n", handshake=False)

    # ------------------------------------------------------------------
    # sending

    def send(self, command: str, log: bool = True, long_operation: bool = False) -> bool:
        """Write one command line. Returns False if it was rejected.

        A rejected command is answered with a synthetic `**ERROR: ...` line
        instead of being written.
        """
        if not self.is_connected or self.transport is None:
            self._synthetic_error(NotConnectedError.message)
            return False
        if self.long_operation is not None and not long_operation:
            if self.long_operation.is_file_transfer:
                self._synthetic_error(FileTransferInProgressError.message)
            else:
                self._synthetic_error(OperationInProgressError.message)
            return False

        self._update(error_code=CONN_ERROR.NONE, error=None)
        if log:
            self._log_request(command)
        logger.debug("*REQUEST* [{}] {!r}", self.instrument_id, command)
        try:
            self.transport.write((command + "\n").encode("latin-1"))
        except OSError as e:
            logger.exception("Write to {} failed.", self.instrument_id)
            self.set_error(CONN_ERROR.UNKNOWN, str(e))
            return False
        return True

    def write_raw(self, data: bytes):
        """Write bytes as they are, for long operations."""
        if not self.is_connected or self.transport is None:
            raise NotConnectedError()
        self.transport.write(data)

    # ------------------------------------------------------------------
    # long operations

    def start_long_operation(
        self, factory: Callable[[Connection], LongOperation]
    ) -> LongOperation:
        if not self.is_connected or self.transport is None:
            raise NotConnectedError()
        if self.long_operation is not None:
            if self.long_operation.is_file_transfer:
                raise FileTransferInProgressError()
            raise OperationInProgressError()
        operation = factory(self)
        self.long_operation = operation
        logger.info("Started {} on {}", operation, self.instrument_id)
        operation.start()
        return operation

    def download(self, instructions: DownloadInstructions):
        self.instrument.set_last_file_download_instructions(instructions)
        try:
            self.start_long_operation(partial(FileDownload, instructions=instructions))
        except LongOperationError as e:
            self._synthetic_error(str(e))

    def abort_long_operation(self):
        if self.long_operation is None:
            logger.error("Abort {}: no long operation in progress.", self.instrument_id)
            return
        logger.info("Aborting {} on {}", self.long_operation, self.instrument_id)
        self._finish_long_operation(abort=True)

    def _finish_long_operation(self, abort: bool = False):
        operation = self.long_operation
        self.long_operation = None
        if abort:
            operation.abort()
        surplus = operation.data_surplus
        self._long_operation_done(operation)
        # surplus (or a line held back during the transfer) is ordinary line data
        self.framer.feed(surplus or b"")

    def _long_operation_done(self, operation: LongOperation):
        log_entry = operation.log_entry
        log_id = self._record(ACTIVITY["FILE"], dumps_message(**log_entry), data=operation.result)
        if operation.failed:
            self.set_error(CONN_ERROR.LONG_OPERATION, operation.error)
        self._send_value({"logEntry": {**log_entry, "logId": log_id}, "data": operation.result})

    async def _run_housekeeping(self):
        while True:
            await asyncio.sleep(self.timings.housekeeping_interval)
            try:
                if self.long_operation is not None and self.long_operation.is_done():
                    self._finish_long_operation()
            except Exception:
                logger.exception("Housekeeping of {} failed.", self.instrument_id)

    # ------------------------------------------------------------------
    # exclusivity

    def acquire(
        self,
        owner: str,
        trace_enabled: bool = True,
        callback: Optional[ValueCallback] = None,
    ) -> Optional[str]:
        """Route values to `owner` until released.

        Returns None on success or a reason string.
        """
        if not self.is_connected:
            return NotConnectedError.message
        if self.exclusive_owner is not None and self.exclusive_owner != owner:
            return f"already acquired by {self.exclusive_owner}"
        self.exclusive_owner = owner
        self._owner_callback = callback
        self.trace_enabled = trace_enabled
        logger.info("{} acquired by {}", self.instrument_id, owner)
        return None

    def release(self, owner: Optional[str] = None):
        if owner is not None and owner != self.exclusive_owner:
            logger.error(
                "Release {}: held by {}, not {}.", self.instrument_id, self.exclusive_owner, owner
            )
            return
        logger.info("{} released by {}", self.instrument_id, self.exclusive_owner)
        self.exclusive_owner = None
        self._owner_callback = None
        self.trace_enabled = True
