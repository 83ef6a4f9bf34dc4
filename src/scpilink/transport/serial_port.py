"""Serial port transport (pyserial).

pyserial is blocking, so a reader thread owns the port and hands every event to
the asyncio loop with `call_soon_threadsafe`. Writes happen on the loop's thread;
pyserial allows a concurrent read and write on the same port.
"""

from __future__ import annotations

import threading
from typing import Optional

import serial
from loguru import logger

from scpilink.types import SerialParameters

from .transport import CONN_ERROR, Transport


class SerialTransport(Transport):
    type = "serial"
    parameters: SerialParameters

    def __init__(self, host, parameters: SerialParameters, loop=None):
        super().__init__(host, parameters, loop)
        self._serial: Optional[serial.Serial] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def _post(self, callback, *args):
        self.loop.call_soon_threadsafe(callback, *args)

    def connect(self):
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"serial-{self.parameters.port}", daemon=True
        )
        self._thread.start()

    def _run(self):
        params = self.parameters
        try:
            self._serial = serial.Serial(
                params.port, baudrate=params.baud_rate, timeout=params.timeout
            )
        except serial.SerialException as e:
            self._post(self.host.set_error, CONN_ERROR.NOT_FOUND, str(e))
            self._post(self.host.disconnected)
            return

        logger.info("Serial port {} open at {} baud", params.port, params.baud_rate)
        self._post(self.host.connected)
        try:
            while not self._stop.is_set():
                try:
                    data = self._serial.read(self._serial.in_waiting or 1)
                except serial.SerialException as e:
                    if not self._stop.is_set():
                        self._post(self.host.set_error, CONN_ERROR.CLOSED_BY_PEER, str(e))
                    break
                if data:
                    self._post(self.host.on_data, data)
        finally:
            self._serial.close()
            self._serial = None
            self._post(self.host.disconnected)

    def disconnect(self):
        self._stop.set()

    def write(self, data: bytes):
        if self._serial is None:
            raise ConnectionError("Serial port is not open.")
        self._serial.write(data)
