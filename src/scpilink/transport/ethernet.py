"""Raw-socket (LXI / port 5025 style) transport over asyncio streams."""

from __future__ import annotations

import asyncio
import socket
from typing import Optional

from loguru import logger

from scpilink.types import EthernetParameters

from .transport import CONN_ERROR, Transport

READ_SIZE = 4096


class EthernetTransport(Transport):
    type = "ethernet"
    parameters: EthernetParameters

    def __init__(self, host, parameters: EthernetParameters, loop=None):
        super().__init__(host, parameters, loop)
        self._task: Optional[asyncio.Task] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._closing = False

    def connect(self):
        self._closing = False
        self._task = self.loop.create_task(self._run())

    async def _run(self):
        params = self.parameters
        try:
            try:
                reader, self._writer = await asyncio.wait_for(
                    asyncio.open_connection(params.address, params.port),
                    timeout=params.connect_timeout,
                )
            except ConnectionRefusedError as e:
                self.host.set_error(CONN_ERROR.REFUSED, str(e))
                return
            except socket.gaierror as e:
                self.host.set_error(CONN_ERROR.NOT_FOUND, str(e))
                return
            except (OSError, asyncio.TimeoutError) as e:
                self.host.set_error(CONN_ERROR.UNKNOWN, str(e) or "Connection timed out.")
                return

            logger.info("Socket open to {}:{}", params.address, params.port)
            self.host.connected()

            while True:
                try:
                    data = await reader.read(READ_SIZE)
                except OSError as e:
                    if not self._closing:
                        self.host.set_error(CONN_ERROR.UNKNOWN, str(e))
                    break
                if not data:
                    if not self._closing:
                        self.host.set_error(
                            CONN_ERROR.CLOSED_BY_PEER, "Connection closed by instrument."
                        )
                    break
                self.host.on_data(data)
        except asyncio.CancelledError:
            logger.debug("Socket task for {} cancelled.", params.describe())
        finally:
            if self._writer is not None:
                self._writer.close()
                self._writer = None
            self.host.disconnected()

    def disconnect(self):
        self._closing = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def write(self, data: bytes):
        if self._writer is None:
            raise ConnectionError("Socket is not open.")
        self._writer.write(data)
