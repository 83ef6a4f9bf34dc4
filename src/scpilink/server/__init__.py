# -*- coding: utf-8 -*-
"""
Server-client communication module for scpilink.

The server process owns the instrument connections (sockets and serial ports can
only be held by one process). Clients, scripts or GUIs in other processes,
mirror those connections with `ConnectionProxy`s and drive them through the
server. Communication uses ZeroMQ sockets.

Examples
--------
Starting a server and talking to an instrument:
```python
from scpilink.server import ConnectionManager
manager = ConnectionManager()
manager.start_local_server()
manager.connect()
conn = manager.get_connection("mock")
conn.connect()
manager.wait_for_state("mock", "connected")
conn.send("*IDN?")
```

See Also
--------
scpilink.server.client : Client-side communication functions
scpilink.server.server : Server implementation
scpilink.server.connection_manager : Connection management class
"""

from __future__ import annotations

import subprocess
import time
from typing import TYPE_CHECKING, Optional

from loguru import logger

import scpilink.types
from scpilink.util import (
    DEFAULT_HOST_ADDR,
    DEFAULT_LOGLEVEL,
    DEFAULT_PORT,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    shutdown_client_log,
    start_client_log,
)

from .bg_killer import (
    cleanup_stale_servers,
    get_servers_dir,
    kill_scpilink_servers,
    list_running_servers,
)
from .client import (
    add_instrument,
    clean_queue,
    client_sync,
    close_connection,
    conn_abort,
    conn_acquire,
    conn_connect,
    conn_destroy,
    conn_disconnect,
    conn_dismiss_error,
    conn_download,
    conn_get_status,
    conn_release,
    conn_send,
    echo,
    get_activity,
    get_other_ports,
    get_server_log_path,
    kill_bg_server,
    list_instruments,
    open_connection,
    ping,
    queue_to_list,
    receive_notification,
    remove_instrument,
    shutdown_server,
    start_bg_notif_listener,
    start_bg_server,
    subscribe,
    unsubscribe,
    wait_for_notif,
)
from .connection_manager import ConnectionManager
from .proxy import ConnectionProxy
from .server import start_server

if TYPE_CHECKING:
    from scpilink.types import ClientConnection, ClientSyncResponse


def start_bg(
    instruments_config: Optional[str] = None,
    host=DEFAULT_HOST_ADDR,
    msg_port=DEFAULT_PORT,
    notif_port=DEFAULT_PORT + 1,
    post_port=DEFAULT_PORT + 2,
    server_log_path: Optional[str] = None,
    clear_prev_log=True,
    timeout=DEFAULT_TIMEOUT,
    request_retries: int = DEFAULT_RETRIES,
    log_level: str = DEFAULT_LOGLEVEL,
) -> tuple[
    subprocess.Popen,
    ClientConnection,
    ClientSyncResponse,
]:
    """Start a background server and connect to it."""
    proc = start_bg_server(
        instruments_config,
        log_path=server_log_path,
        host=host,
        msg_port=msg_port,
        notif_port=notif_port,
        post_port=post_port,
        clear_prev_log=clear_prev_log,
        log_to_file=True,  # NOTE always want this,
        log_to_stdout=False,  # and never want this, for bg server
        log_level=log_level,
    )
    logger.info("Server started on {}:{} @ pid={}", host, msg_port, proc.pid)
    time.sleep(1)  # give server time to start
    try:
        client_connection, client_sync_resp = open_connection(
            host=host,
            msg_port=msg_port,
            timeout=timeout,
            request_retries=request_retries,
        )
    except scpilink.types.CommsError:
        kill_bg_server(proc)  # adds proc errors to client log
        raise
    return proc, client_connection, client_sync_resp


def close_bg(proc: subprocess.Popen, client_connection: ClientConnection):
    shutdown_server(client_connection)  # also closes the connection
    kill_bg_server(proc)
    shutdown_client_log()


__all__ = [
    "add_instrument",
    "clean_queue",
    "cleanup_stale_servers",
    "client_sync",
    "close_bg",
    "close_connection",
    "conn_abort",
    "conn_acquire",
    "conn_connect",
    "conn_destroy",
    "conn_disconnect",
    "conn_dismiss_error",
    "conn_download",
    "conn_get_status",
    "conn_release",
    "conn_send",
    "ConnectionManager",
    "ConnectionProxy",
    "echo",
    "get_activity",
    "get_other_ports",
    "get_server_log_path",
    "get_servers_dir",
    "kill_bg_server",
    "kill_scpilink_servers",
    "list_instruments",
    "list_running_servers",
    "open_connection",
    "ping",
    "queue_to_list",
    "receive_notification",
    "remove_instrument",
    "shutdown_server",
    "start_bg",
    "start_bg_notif_listener",
    "start_bg_server",
    "start_client_log",
    "start_server",
    "subscribe",
    "unsubscribe",
    "wait_for_notif",
]
