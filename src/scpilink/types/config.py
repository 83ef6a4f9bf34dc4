"""Connection parameters, download instructions and session timings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from mashumaro.mixins.msgpack import DataClassMessagePackMixin
from mashumaro.types import Discriminator

from scpilink.util.defaults import (
    COMBINE_IF_BELOW,
    DEFAULT_BAUD_RATE,
    DEFAULT_ETHERNET_PORT,
    HOUSEKEEPING_INTERVAL,
    IDN_EXPECTED_TIMEOUT,
)


@dataclass(kw_only=True)
class ConnectionParameters(DataClassMessagePackMixin):
    """How to reach an instrument. The `type` tag selects the transport."""

    type: str  # subclass to define

    class Config:
        discriminator = Discriminator(field="type", include_subtypes=True)

    def describe(self) -> str:
        return self.type


@dataclass(kw_only=True)
class EthernetParameters(ConnectionParameters):
    type: str = "ethernet"
    address: str
    port: int = DEFAULT_ETHERNET_PORT
    connect_timeout: float = 5.0  # seconds

    def describe(self) -> str:
        return f"{self.address}:{self.port}"


@dataclass(kw_only=True)
class SerialParameters(ConnectionParameters):
    type: str = "serial"
    port: str
    baud_rate: int = DEFAULT_BAUD_RATE
    timeout: float = 0.05  # read timeout of the reader thread, seconds

    def describe(self) -> str:
        return f"{self.port}@{self.baud_rate}"


@dataclass(kw_only=True)
class MockParameters(ConnectionParameters):
    """A simulated instrument living inside the transport.

    `responses` maps commands (case-insensitive) to answer text; `*IDN?` is
    answered with `idn` unless `answer_idn` is False. Answers are delayed by
    `latency` seconds and cut into `chunk_size` byte pieces (0 = whole answer).
    """

    type: str = "mock"
    idn: str = "SCPILINK,MOCK-1,0001,0.1"
    responses: dict[str, str] = field(default_factory=dict)
    answer_idn: bool = True
    fail_connect: bool = False
    latency: float = 0.0
    chunk_size: int = 0

    def describe(self) -> str:
        return f"mock ({self.idn})"


@dataclass(kw_only=True)
class DownloadInstructions(DataClassMessagePackMixin):
    """How to push a file to the instrument as a series of block commands.

    Command templates may contain `<path>` (destination_file_path) and `<size>`
    (total payload length in bytes). Each chunk is sent as
    `send_chunk_command_template` followed by the chunk in definite-length block
    form and a line terminator.
    """

    source_file_path: Optional[str] = None
    data: Optional[bytes] = None
    destination_file_path: str = ""
    start_command_template: Optional[str] = 'MMEM:DOWN:FNAM "<path>"'
    send_chunk_command_template: str = "MMEM:DOWN:DATA "
    finish_command_template: Optional[str] = None
    abort_command_template: Optional[str] = None
    chunk_size: int = 1024
    chunk_interval: float = 0.0  # seconds between chunks
    description: str = ""


@dataclass
class ConnectionTimings:
    housekeeping_interval: float = HOUSEKEEPING_INTERVAL
    idn_expected_timeout: float = IDN_EXPECTED_TIMEOUT
    combine_if_below: float = COMBINE_IF_BELOW
