"""Transports: the byte-stream links a Connection drives.

The set of transports is closed; `create_transport` picks one from the `type`
tag of the connection parameters.
"""

from __future__ import annotations

from scpilink.types import ConnectionParameters, TransportHost

from .ethernet import EthernetTransport
from .mock import MockTransport
from .serial_port import SerialTransport
from .transport import CONN_ERROR, Transport

TRANSPORT_TYPES: dict[str, type[Transport]] = {
    EthernetTransport.type: EthernetTransport,
    SerialTransport.type: SerialTransport,
    MockTransport.type: MockTransport,
}


def create_transport(
    host: TransportHost, parameters: ConnectionParameters, loop=None
) -> Transport:
    try:
        transport_cls = TRANSPORT_TYPES[parameters.type]
    except KeyError:
        raise ValueError(f"Unknown transport type: {parameters.type}")
    return transport_cls(host, parameters, loop)


__all__ = [
    "CONN_ERROR",
    "create_transport",
    "EthernetTransport",
    "MockTransport",
    "SerialTransport",
    "Transport",
    "TRANSPORT_TYPES",
]
