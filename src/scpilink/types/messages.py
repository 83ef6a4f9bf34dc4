"""Message types for client-server communication."""

from __future__ import annotations

import pickle
from dataclasses import dataclass, field
from typing import Any, Optional

from mashumaro.mixins.msgpack import DataClassMessagePackMixin
from mashumaro.types import Discriminator

from .commands import CONSTS


def get_all_subclasses_map(cls: type) -> dict[str, type]:
    """Get all subclasses of a class recursively."""

    def _get_all(clas: type, subclasses: dict[str, type]):
        for subcls in clas.__subclasses__():
            subclasses[subcls.__name__] = subcls
            _get_all(subcls, subclasses)
        return subclasses

    return _get_all(cls, dict())


@dataclass
class Message(DataClassMessagePackMixin):
    """Base class for all messages."""

    def __repr__(self):
        fields = []
        for name, val in self.__dict__.items():
            if isinstance(val, (bytes, bytearray)) and len(val) > 32:
                fields.append(f"{name}=<{len(val)} bytes>")
            else:
                fields.append(f"{name}={val!r}")
        return self.__class__.__name__ + "(" + ", ".join(fields) + ")"


@dataclass(repr=False)
class Request(Message):
    """A request from client to server.

    The same Request type travels over the REQ/ROUTER pair (blocking, answered) and
    the PUSH/PULL pair (posted, never answered). Requests that act on one
    instrument carry `params["instrument_id"]`.
    """

    command: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(kw_only=True, repr=False)
class Response(Message):
    """A response from server to client's request."""

    type: str  # subclass to define
    value: Any  # subclass to define

    class Config:
        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass(kw_only=True, repr=False)
class MsgResponse(Response):
    type: str = "msg"
    value: str = ""


@dataclass(kw_only=True, repr=False)
class DictResponse(Response):
    type: str = "dict"
    value: dict = field(default_factory=dict)


@dataclass(kw_only=True, repr=False)
class ValueResponse(Response):
    type: str = "value"
    value: int | float | str | bool = False


@dataclass(kw_only=True, repr=False)
class TupleResponse(Response):
    type: str = "tuple"
    value: tuple = ()


@dataclass(kw_only=True, repr=False)
class ErrorResponse(Response):
    type: str = "error"
    value: str = ""


@dataclass(kw_only=True, repr=False)
class ClientSyncResponse(Response):
    type: str = "client_sync"
    value: None = None
    version: str
    instrument_ids: list[str]


@dataclass(kw_only=True, repr=False)
class StatusResponse(Response):
    type: str = "status"
    value: None = None
    instrument_id: str
    state: str
    error_code: str
    error: Optional[str]
    seq: int


@dataclass(kw_only=True, repr=False)
class Notification(Message):
    type: str

    class Config:
        discriminator = Discriminator(field="type", include_subtypes=True)

    def get_topic(self) -> str:
        """Pub/sub topic this notification is published under."""
        return CONSTS.TOPIC.SERVER + self.type


@dataclass(kw_only=True, repr=False)
class ConnectionStatusUpdate(Notification):
    """Published by a server-side Connection on every change of its status."""

    type: str = "connection_status"
    instrument_id: str
    state: str
    error_code: str
    error: Optional[str]
    seq: int

    def get_topic(self) -> str:
        return f"{CONSTS.TOPIC.INSTRUMENT}{self.instrument_id}/connection"


@dataclass(kw_only=True, repr=False)
class ValueNotification(Notification):
    """A received value, for the session owner (or "" for the default sink)."""

    type: str = "value"
    instrument_id: str
    owner: str = ""
    value: Any = field(
        default=None,
        metadata={"serialize": pickle.dumps, "deserialize": pickle.loads},
    )

    def get_topic(self) -> str:
        return f"{CONSTS.TOPIC.INSTRUMENT}{self.instrument_id}/value"


@dataclass(kw_only=True, repr=False)
class InstrumentAdded(Notification):
    type: str = "instrument_added"
    instrument_id: str


@dataclass(kw_only=True, repr=False)
class InstrumentRemoved(Notification):
    type: str = "instrument_removed"
    instrument_id: str
