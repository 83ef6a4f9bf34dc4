"""
Connection manager for client-side server connections.

This class encapsulates all connection handling and server communication,
providing a clean interface for the rest of the application to use. It also
keeps the `ConnectionProxy`s of this process, feeding them the status and value
notifications the server publishes.
"""

from __future__ import annotations

import asyncio
import subprocess
import time
from typing import Any, Optional, Type, TypeVar

import zmq
from loguru import logger

import scpilink.server.client as client
from scpilink.connection.connection import ValueCallback
from scpilink.connection.registry import SessionRegistry
from scpilink.server.proxy import ConnectionProxy
from scpilink.types import (
    CONSTS,
    ClientConnection,
    ClientSyncResponse,
    ConnectionStatusUpdate,
    InstrumentRemoved,
    Notification,
    ValueNotification,
)
from scpilink.util import (
    DEFAULT_HOST_ADDR,
    DEFAULT_LOGLEVEL,
    DEFAULT_PORT,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
)


class ConnectionManager:
    """
    Manages client-side connection to the server.

    This class handles connection lifecycle and state management, while delegating
    protocol operations to the client module functions. It provides a clean OO
    interface by automatically wrapping client functions as methods.

    Instrument sessions are mirrored with `get_connection`. Their status only
    moves when notifications are processed, either by the background listener
    (`start_notification_listener`, inside an event loop) or by calling
    `process_notifications` / `wait_for_state` from plain scripts.
    """

    def __init__(self, value_sink: Optional[ValueCallback] = None):
        self._connection: Optional[ClientConnection] = None
        self._client_sync: Optional[ClientSyncResponse] = None
        self._server_proc: Optional[subprocess.Popen] = None
        self._notif_task: Optional[asyncio.Task] = None
        self._notif_queue: Optional[asyncio.Queue] = None
        self._prev_connection_params: Optional[tuple[str, int, float, int]] = None
        self.value_sink = value_sink
        self.sessions = SessionRegistry()

    @property
    def connection(self) -> Optional[ClientConnection]:
        """Get the current connection."""
        return self._connection

    @property
    def client_sync(self) -> Optional[ClientSyncResponse]:
        """Get the last client sync response."""
        return self._client_sync

    def is_connected(self) -> bool:
        """Check if currently connected to server."""
        return self._connection is not None

    def _require_connection(self) -> ClientConnection:
        if not self._connection:
            raise RuntimeError("Not connected to server")
        return self._connection

    # ========================================================================
    # Server lifecycle
    # ========================================================================

    def start_local_server(
        self,
        instruments_config: Optional[str] = None,
        host: str = DEFAULT_HOST_ADDR,
        msg_port: int = DEFAULT_PORT,
        notif_port: int = DEFAULT_PORT + 1,
        post_port: int = DEFAULT_PORT + 2,
        log_path: Optional[str] = None,
        clear_prev_log: bool = True,
        log_to_file: bool = True,
        log_to_stdout: bool = False,
        log_level: str = DEFAULT_LOGLEVEL,
    ) -> None:
        """Start a server process."""
        if self._server_proc:
            logger.warning("Server already running, stopping first")
            self.stop_server()

        self._server_proc = client.start_bg_server(
            instruments_config,
            host,
            msg_port,
            notif_port,
            post_port,
            log_path,
            clear_prev_log,
            log_to_file,
            log_to_stdout,
            log_level,
        )
        logger.info("Server process started: {}", self._server_proc)
        time.sleep(0.2)

    def stop_server(self) -> None:
        """Stop the server and handle connection cleanup.

        This method sends a shutdown command to the server if connected,
        and handles the expected disconnection gracefully.
        """
        if self._server_proc:
            self.stop_local_server()
            return

        if not self._connection and self._prev_connection_params:
            try:
                self._connection = client.open_connection(*self._prev_connection_params)[0]
            except Exception as e:
                # continue with termination even if reconnect fails
                logger.warning("Could not reconnect to remote running server: {}", e)

        if self._connection:
            # shutdown_server closes the sockets
            client.shutdown_server(self._connection)
            self._connection = None
            self._forget_session_state()
            logger.info("Server shutdown completed")
        else:
            logger.warning("No connection, can't stop remote server.")

    def stop_local_server(self) -> None:
        """Stop the server process if running."""
        if not self._server_proc:
            return
        if not self._connection:
            logger.warning("No connection, killing server process without shutting down")
        else:
            logger.info("Shutting down local server.")
            client.shutdown_server(self._connection)
            self._connection = None
        client.kill_bg_server(self._server_proc)
        self._server_proc = None
        self._forget_session_state()

    # ========================================================================
    # Client connection
    # ========================================================================

    def connect(
        self,
        host: str = DEFAULT_HOST_ADDR,
        msg_port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        request_retries: int = DEFAULT_RETRIES,
    ) -> None:
        """Connect to a running server."""
        if self._connection:
            logger.warning("Already connected, disconnecting first")
            self.disconnect()

        try:
            self._connection, self._client_sync = client.open_connection(
                host, msg_port, timeout, request_retries
            )
        except Exception:
            # ensure these aren't set if connection fails
            self._connection = None
            self._client_sync = None
            raise
        self._prev_connection_params = (host, msg_port, timeout, request_retries)
        logger.info("Connected to server: {}", self._client_sync)

    def disconnect(self) -> None:
        """Disconnect from the server. Server-side sessions keep running."""
        if self._connection:
            client.close_connection(self._connection)
            self._connection = None
        self._forget_session_state()

    def _forget_session_state(self):
        if self._notif_task:
            self._notif_task.cancel()
            self._notif_task = None
        self._notif_queue = None
        self._client_sync = None
        # proxies are dropped, the real connections live on in the server
        self.sessions.close_all(destroy=False)

    # ========================================================================
    # Sessions
    # ========================================================================

    def get_connection(self, instrument_id: str) -> ConnectionProxy:
        """The proxy mirroring `instrument_id`'s session, created on first use."""
        proxy = self.sessions.get(instrument_id)
        if proxy is not None:
            return proxy
        connection = self._require_connection()
        # subscribe before the status snapshot so no update falls in between
        client.subscribe(connection, f"{CONSTS.TOPIC.INSTRUMENT}{instrument_id}/")
        proxy = ConnectionProxy(instrument_id, connection, value_sink=self.value_sink)
        return self.sessions.add(proxy)

    def drop_connection(self, instrument_id: str) -> None:
        """Stop mirroring an instrument. Its server-side session is untouched."""
        if self.sessions.remove(instrument_id, destroy=False) is not None and self._connection:
            client.unsubscribe(self._connection, f"{CONSTS.TOPIC.INSTRUMENT}{instrument_id}/")

    def _dispatch(self, notif: Notification) -> None:
        if isinstance(notif, ConnectionStatusUpdate):
            proxy = self.sessions.get(notif.instrument_id)
            if proxy is not None:
                proxy.apply_status(notif)
        elif isinstance(notif, ValueNotification):
            proxy = self.sessions.get(notif.instrument_id)
            if proxy is not None:
                proxy.on_value(notif)
        elif isinstance(notif, InstrumentRemoved):
            if notif.instrument_id in self.sessions:
                logger.info("Instrument {} removed from server", notif.instrument_id)
                self.drop_connection(notif.instrument_id)

    def process_notifications(self, max_items: int = 100) -> int:
        """Dispatch pending notifications without an event loop. Returns the count."""
        connection = self._require_connection()
        count = 0
        while count < max_items:
            notif = client.receive_notification(connection)
            if notif is None:
                break
            self._dispatch(notif)
            count += 1
        return count

    def wait_for_state(
        self, instrument_id: str, state: str, timeout: float = DEFAULT_TIMEOUT
    ) -> ConnectionProxy:
        """Block (processing notifications) until the session reaches `state`."""
        proxy = self.get_connection(instrument_id)
        start = time.time()
        while proxy.state != state:
            if time.time() - start > timeout:
                raise TimeoutError(
                    f"Timeout waiting for {instrument_id} to be {state} (is {proxy.state})."
                )
            if not self.process_notifications():
                time.sleep(0.01)
        return proxy

    async def await_state(
        self, instrument_id: str, state: str, timeout: float = DEFAULT_TIMEOUT
    ) -> ConnectionProxy:
        """As `wait_for_state`, for use alongside the notification listener."""
        proxy = self.get_connection(instrument_id)
        start = time.time()
        while proxy.state != state:
            if time.time() - start > timeout:
                raise TimeoutError(
                    f"Timeout waiting for {instrument_id} to be {state} (is {proxy.state})."
                )
            if self._notif_task is None:
                self.process_notifications()
            await asyncio.sleep(0.01)
        return proxy

    # ========================================================================
    # Notifications
    # ========================================================================

    def start_notification_listener(self) -> None:
        """Start the notification listener task (requires a running event loop)."""
        self._notif_task, self._notif_queue = client.start_bg_notif_listener(
            self._require_connection(), on_notification=self._dispatch
        )

    T = TypeVar("T", bound=Notification)

    async def wait_for_notification(
        self, notif_type: Type[T], timeout: float = DEFAULT_TIMEOUT
    ) -> T:
        """Wait for a specific type of notification."""
        if not self._notif_queue:
            raise RuntimeError("Notification listener not started")
        return await client.wait_for_notif(self._notif_queue, notif_type, timeout)

    def clean_notification_queue(self) -> None:
        """Clear all pending notifications."""
        if self._notif_queue:
            client.clean_queue(self._notif_queue)

    def get_notifications(self, max_items: int = 10) -> list[Notification]:
        """Get pending notifications up to max_items."""
        if not self._notif_queue:
            return []
        return client.queue_to_list(self._notif_queue, max_items)

    def get_notification_socket(self) -> zmq.Socket:
        """Get the notification socket for direct access."""
        return self._require_connection().notif_socket

    # ========================================================================
    # Access client.py function 'through' the connection manager w automatic
    # check if connection is open.
    # ========================================================================

    def __getattr__(self, name: str) -> Any:
        """
        Delegate unknown attributes to client protocol functions.

        Examples:
            manager = ConnectionManager()
            manager.connect()

            manager.ping()  # Calls client.ping(connection)
            manager.echo("test")  # Calls client.echo(connection, "test")
            manager.list_instruments()
            manager.conn_send("mock", "*RST")

        Raises:
            RuntimeError: If not connected to server
            AttributeError: If no matching client function exists
        """
        if name.startswith("_"):
            raise AttributeError(f"'{self.__class__.__name__}' has no attribute '{name}'")
        if hasattr(client, name):
            func = getattr(client, name)

            def wrapper(*args, **kwargs):
                return func(self._require_connection(), *args, **kwargs)

            return wrapper
        raise AttributeError(f"'{self.__class__.__name__}' has no attribute '{name}'")
