"""Shared types: messages, command strings, connection parameters and exceptions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

import zmq
import zmq.asyncio

from .commands import CONSTS
from .config import (
    ConnectionParameters,
    ConnectionTimings,
    DownloadInstructions,
    EthernetParameters,
    MockParameters,
    SerialParameters,
)
from .messages import (
    ClientSyncResponse,
    ConnectionStatusUpdate,
    DictResponse,
    ErrorResponse,
    InstrumentAdded,
    InstrumentRemoved,
    Message,
    MsgResponse,
    Notification,
    Request,
    Response,
    StatusResponse,
    TupleResponse,
    ValueNotification,
    ValueResponse,
    get_all_subclasses_map,
)
from .protocols import ActivityLogProtocol, TransportHost, ValueParser
from .validation import (
    HANDLER_REGISTRY,
    PENDING_COMMAND_VALIDATIONS,
    HandlerInfo,
    ValidationError,
    assert_valid_handler_client_correspondence,
    validate_handler_client_correspondence,
)

if TYPE_CHECKING:
    from scpilink.instrument import Instrument
    from scpilink.util.activity_log import ActivityLog


@dataclass
class ClientConnection:
    """Client-side connection information."""

    context: zmq.Context
    msg_socket: zmq.Socket  # REQ socket (sync)
    notif_socket: zmq.Socket  # SUB socket for notifications
    post_socket: zmq.Socket  # PUSH socket for fire-and-forget requests
    host: str
    msg_port: int
    notif_port: int
    post_port: int


@dataclass
class ServerConnection:
    """Server-side connection information and shared server state."""

    msg_socket: zmq.asyncio.Socket  # ROUTER socket
    notif_socket: zmq.asyncio.Socket  # PUB socket for notifications
    post_socket: zmq.asyncio.Socket  # PULL socket for posted requests
    host: str
    msg_port: int
    notif_port: int
    post_port: int
    notif_queue: asyncio.Queue
    activity_log: ActivityLog
    timings: ConnectionTimings = field(default_factory=ConnectionTimings)
    instruments: dict[str, Instrument] = field(default_factory=dict)
    context: Optional[zmq.asyncio.Context] = None
    seq_source: Optional[Callable[[], int]] = None  # shared by all sessions
    shutdown_requested: bool = False


# Exceptions
class CommsError(Exception):
    """Base exception for communication errors."""

    pass


class LongOperationError(Exception):
    """A long operation (file transfer) could not be started or failed."""

    message = "long operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class NotConnectedError(LongOperationError):
    message = "not connected"


class FileTransferInProgressError(LongOperationError):
    message = "file transfer in progress"


class OperationInProgressError(LongOperationError):
    message = "another operation in progress"


__all__ = [
    "ActivityLogProtocol",
    "ClientConnection",
    "ClientSyncResponse",
    "CommsError",
    "ConnectionParameters",
    "ConnectionStatusUpdate",
    "ConnectionTimings",
    "CONSTS",
    "DictResponse",
    "DownloadInstructions",
    "ErrorResponse",
    "EthernetParameters",
    "FileTransferInProgressError",
    "get_all_subclasses_map",
    "HANDLER_REGISTRY",
    "HandlerInfo",
    "InstrumentAdded",
    "InstrumentRemoved",
    "LongOperationError",
    "Message",
    "MockParameters",
    "MsgResponse",
    "NotConnectedError",
    "Notification",
    "OperationInProgressError",
    "PENDING_COMMAND_VALIDATIONS",
    "Request",
    "Response",
    "SerialParameters",
    "ServerConnection",
    "StatusResponse",
    "TransportHost",
    "TupleResponse",
    "ValidationError",
    "ValueNotification",
    "ValueParser",
    "ValueResponse",
    "assert_valid_handler_client_correspondence",
    "validate_handler_client_correspondence",
]
