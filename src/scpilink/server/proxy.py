"""A stand-in for a Connection that lives in another process.

The proxy owns no transport. Mutating calls are posted to the server (PUSH/PULL,
no reply); `acquire` and `release` are blocking round trips so two processes
cannot both believe they own the instrument. Status and values come back as
notifications, which the owner of the proxy (normally a `ConnectionManager`)
feeds to `apply_status` and `on_value`.
"""

from __future__ import annotations

import threading
from typing import Optional, Union

from loguru import logger

import scpilink.server.client as client
from scpilink.connection.connection import ConnectionBase, ValueCallback
from scpilink.types import (
    ClientConnection,
    ConnectionParameters,
    ConnectionStatusUpdate,
    DownloadInstructions,
    StatusResponse,
    ValueNotification,
)


class ConnectionProxy(ConnectionBase):
    def __init__(
        self,
        instrument_id: str,
        client_connection: ClientConnection,
        value_sink: Optional[ValueCallback] = None,
    ):
        super().__init__(instrument_id)
        self.client_connection = client_connection
        self.value_sink = value_sink
        self.seq = -1
        self.exclusive_owner: Optional[str] = None
        self._owner_callback: Optional[ValueCallback] = None
        self._lock = threading.Lock()
        # a fresh SUB socket misses whatever was published before it joined
        self.refresh()

    def refresh(self):
        """Fetch the current status with a blocking request."""
        self.apply_status(client.conn_get_status(self.client_connection, self.instrument_id))

    def apply_status(self, status: Union[ConnectionStatusUpdate, StatusResponse]) -> bool:
        """Mirror a published status. Returns False for a stale one."""
        with self._lock:
            if status.seq <= self.seq:
                logger.trace(
                    "Ignoring stale status {} <= {} for {}", status.seq, self.seq, self.instrument_id
                )
                return False
            self.seq = status.seq
            self.state = status.state
            self.error_code = status.error_code
            self.error = status.error
        logger.debug("Proxy {} -> {} ({})", self.instrument_id, self.state, self.error_code)
        return True

    def on_value(self, notification: ValueNotification):
        if notification.owner:
            if notification.owner != self.exclusive_owner or self._owner_callback is None:
                return
            target = self._owner_callback
        else:
            target = self.value_sink
        if target is None:
            return
        try:
            target(notification.value)
        except Exception:
            logger.exception("Value callback of proxy {} failed.", self.instrument_id)

    # ------------------------------------------------------------------
    # forwarded, fire-and-forget

    def connect(self, parameters: Optional[ConnectionParameters] = None):
        client.conn_connect(self.client_connection, self.instrument_id, parameters)

    def disconnect(self):
        client.conn_disconnect(self.client_connection, self.instrument_id)

    def destroy(self):
        client.conn_destroy(self.client_connection, self.instrument_id)

    def send(self, command: str, log: bool = True, long_operation: bool = False):
        client.conn_send(self.client_connection, self.instrument_id, command, log, long_operation)

    def download(self, instructions: DownloadInstructions):
        client.conn_download(self.client_connection, self.instrument_id, instructions)

    def abort_long_operation(self):
        client.conn_abort(self.client_connection, self.instrument_id)

    def dismiss_error(self):
        client.conn_dismiss_error(self.client_connection, self.instrument_id)

    # ------------------------------------------------------------------
    # forwarded, blocking

    def acquire(
        self,
        owner: str,
        trace_enabled: bool = True,
        callback: Optional[ValueCallback] = None,
    ) -> Optional[str]:
        err = client.conn_acquire(self.client_connection, self.instrument_id, owner, trace_enabled)
        if err is None:
            self.exclusive_owner = owner
            self._owner_callback = callback
        return err

    def release(self, owner: Optional[str] = None):
        client.conn_release(
            self.client_connection, self.instrument_id, owner or self.exclusive_owner
        )
        self.exclusive_owner = None
        self._owner_callback = None
