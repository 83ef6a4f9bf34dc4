"""The instrument entity a connection works for."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger
from mashumaro.mixins.msgpack import DataClassMessagePackMixin

from scpilink.types.config import ConnectionParameters, DownloadInstructions


@dataclass
class Instrument(DataClassMessagePackMixin):
    """Static description of an instrument plus what its sessions learned about it.

    Attributes
    ----------
    id : str
        Stable key, used for the session registry and message routing
    name : str
        Human readable name
    connection_parameters : ConnectionParameters | None
        Where the instrument was last reached. Needed before `connect()`
    auto_connect : bool
        Connect as soon as a Connection is created for this instrument
    idn : str | None
        Last `*IDN?` answer
    last_connected : float | None
        Time (epoch seconds) the last session that reached CONNECTED ended
    last_file_download_instructions : DownloadInstructions | None
        Instructions of the last download started on this instrument
    """

    id: str
    name: str = ""
    connection_parameters: Optional[ConnectionParameters] = None
    auto_connect: bool = False
    idn: Optional[str] = None
    last_connected: Optional[float] = None
    last_file_download_instructions: Optional[DownloadInstructions] = None

    def __post_init__(self):
        if not self.name:
            self.name = self.id

    def set_idn(self, idn: str):
        self.idn = idn.strip()
        logger.info("Instrument {} identified as '{}'", self.id, self.idn)

    def set_connection_parameters(self, parameters: ConnectionParameters):
        logger.debug("Instrument {} connection parameters: {}", self.id, parameters)
        self.connection_parameters = parameters

    def set_last_file_download_instructions(self, instructions: DownloadInstructions):
        self.last_file_download_instructions = instructions

    def get_info(self) -> dict:
        params = self.connection_parameters
        return {
            "name": self.name,
            "type": params.type if params else "",
            "address": params.describe() if params else "",
            "auto_connect": self.auto_connect,
            "idn": self.idn or "",
        }
