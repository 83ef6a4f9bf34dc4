# -*- coding: utf-8 -*-
"""
Client implementation of the client-server interface.

The client uses a decorator-based framework to maintain correspondence with server handlers:

1. Each client function is decorated with @command to specify which handler it calls
2. Blocking functions use _send_request (REQ socket) and wait for the reply
3. Fire-and-forget functions use _post_request (PUSH socket) and return at once
4. The protocol registry maintains the mapping between clients and handlers

The protocol correspondence can be validated using:
assert_valid_handler_client_correspondence()

Notifications (connection status, values, instrument changes) arrive on the SUB
socket as `[topic, payload]` frames. Only `server/` topics are subscribed to on
connection; per-instrument topics are subscribed by whoever mirrors that
instrument (see `ConnectionManager.get_connection`).

See types/validation.py for the registry and server.py for the server side.
"""

# ============================================================================

from __future__ import annotations

import asyncio
import os
import subprocess
import sys
import time
from functools import wraps
from timeit import default_timer as timer
from typing import TYPE_CHECKING, Any, Callable, Optional, Type, TypeVar, Union, cast

import zmq
from loguru import logger

import scpilink
import scpilink.util
from scpilink.server.bg_killer import kill_scpilink_servers
from scpilink.types import (
    CONSTS,
    PENDING_COMMAND_VALIDATIONS,
    ClientConnection,
    ClientSyncResponse,
    CommsError,
    ConnectionParameters,
    DictResponse,
    DownloadInstructions,
    ErrorResponse,
    MsgResponse,
    Notification,
    Request,
    Response,
    StatusResponse,
    TupleResponse,
    ValueResponse,
)
from scpilink.util import (
    DEFAULT_HOST_ADDR,
    DEFAULT_LOGLEVEL,
    DEFAULT_PORT,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    format_error_response,
)

if TYPE_CHECKING:
    import scpilink.server
    from scpilink.instrument import Instrument

# ============================================================================


def start_bg_server(
    instruments_config: Optional[str] = None,
    host: str = DEFAULT_HOST_ADDR,
    msg_port: int = DEFAULT_PORT,
    notif_port: int = DEFAULT_PORT + 1,
    post_port: int = DEFAULT_PORT + 2,
    log_path: Optional[str] = None,  # if "" or None defaults to log_default_path_server
    clear_prev_log: bool = True,
    log_to_file: bool = True,
    log_to_stdout: bool = False,
    log_level: str = DEFAULT_LOGLEVEL,
) -> subprocess.Popen:
    """Start a background server process.

    Parameters
    ----------
    instruments_config : str | None, optional
        Instrument INI file, by default only the user and packaged instruments
    host : str, optional
        Host address to bind to, by default DEFAULT_HOST_ADDR
    msg_port : int, optional
        Port for the request socket, by default DEFAULT_PORT
    notif_port : int, optional
        Port for the notification socket, by default DEFAULT_PORT + 1
    post_port : int, optional
        Port for the fire-and-forget socket, by default DEFAULT_PORT + 2
    log_path : str | None, optional
        Path to log file (None/empty for default), by default None
    clear_prev_log : bool, optional
        Whether to clear previous log, by default True
    log_to_file : bool, optional
        Whether to log to file, by default True
    log_to_stdout : bool, optional
        Whether to log to stdout, by default False
    log_level : str, optional
        Logging level, by default DEFAULT_LOGLEVEL

    Returns
    -------
    subprocess.Popen
        The server process handle
    """
    if log_path is None or log_path == "":
        log_path = scpilink.util.log_default_path_server()

    killed = kill_scpilink_servers()  # one server per machine
    logger.info("Killed {} running local servers.", killed)

    this_dir = os.path.dirname(os.path.realpath(__file__))
    proc = subprocess.Popen(
        [
            sys.executable,
            this_dir + "/server_script.py",
            instruments_config or "",
            host,
            str(msg_port),
            str(notif_port),
            str(post_port),
            log_path,
            str(clear_prev_log),
            str(log_to_file),
            str(log_to_stdout),
            str(log_level),
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    return proc


# ============================================================================


def kill_bg_server(proc: subprocess.Popen):
    """Kill a background server process, logging whatever it printed."""
    logger.info("Killing server process.")
    pid = proc.pid
    proc.kill()
    outs, errs = proc.communicate()
    outs = outs.decode("utf-8")
    errs = errs.decode("utf-8")
    if outs:
        logger.info("#======= Server killed, outs: =======#")
        logger.info(outs)
    if errs:
        logger.error("#======= Server killed, errs: =======#")
        logger.error(errs)
        logger.error("PID = {}", pid)


# ====================================================================================


def _get_response(
    client_connection: ClientConnection,
    request: Request,
    request_retries: int = DEFAULT_RETRIES,
) -> Response:
    """Read a single response from the server (ZMQ lazy pirate).

    Polls the REQ socket, resends the request on a fresh socket if no reply
    arrives within DEFAULT_TIMEOUT and gives up after `request_retries` retries.

    Returns
    -------
    Response
        The response object from the server, or an ErrorResponse if the server
        appears to be offline.
    """
    retries_left = request_retries + 1  # first attempt
    is_shutdown_request = request.command == CONSTS.COMMS.SHUTDOWN

    logger.debug("*REQUEST* (client->): {}", request)
    client_connection.msg_socket.send(request.to_msgpack())
    while True:
        try:
            if client_connection.msg_socket.poll(1000 * DEFAULT_TIMEOUT, zmq.POLLIN):
                resp = Response.from_msgpack(client_connection.msg_socket.recv())
                logger.debug("*RESPONSE* (client<-): {}", resp)
                return resp
        except zmq.ZMQError as e:
            if is_shutdown_request:
                logger.info("Expected ZMQ error after shutdown command")
                return MsgResponse(value="Server shutting down")
            logger.warning("ZMQ error: {}", e)

        retries_left -= 1
        logger.warning("No response from server...")
        # Socket is confused. Close and remove it.
        client_connection.msg_socket.setsockopt(zmq.LINGER, 0)
        client_connection.msg_socket.close()
        if retries_left == 0:
            logger.error("Server seems to be offline, abandoning.")
            return ErrorResponse(value="Server seems to be offline.")
        logger.info("Reconnecting to server...")
        # only the REQ socket is reopened, subscriptions are kept
        client_connection.msg_socket = client_connection.context.socket(zmq.REQ)
        client_connection.msg_socket.connect(
            f"tcp://{client_connection.host}:{client_connection.msg_port}"
        )
        logger.debug("*REQUEST* (client->): {}", request)
        client_connection.msg_socket.send(request.to_msgpack())


# ====================================================================================


def _confirm_connection(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> bool:
    """Check the server is up by pinging it. Allows the server time to start."""
    resp = _get_response(client_connection, Request(CONSTS.COMMS.PING), request_retries)
    if isinstance(resp, ErrorResponse):
        logger.error("Err during connection confirmation: '{}'", resp.value)
        return False
    if resp.value != CONSTS.COMMS.PONG:
        logger.error("Bad response from server.")
        return False
    return True


# ============================================================================


def _open_connection(
    context: zmq.Context,
    host: str,
    msg_port: int,
    notif_port: int,
    post_port: int,
) -> ClientConnection:
    """Open the REQ, SUB and PUSH sockets to the server."""
    logger.info("Attempting full connection to server on {}:{}.", host, msg_port)
    try:
        msg_socket = context.socket(zmq.REQ)
        msg_socket.connect(f"tcp://{host}:{msg_port}")
        notif_socket = context.socket(zmq.SUB)
        notif_socket.setsockopt(zmq.SUBSCRIBE, CONSTS.TOPIC.SERVER.encode())
        notif_socket.connect(f"tcp://{host}:{notif_port}")
        post_socket = context.socket(zmq.PUSH)
        post_socket.connect(f"tcp://{host}:{post_port}")
        client_connection = ClientConnection(
            context,
            msg_socket,
            notif_socket,
            post_socket,
            host,
            msg_port,
            notif_port,
            post_port,
        )
    except Exception:
        logger.exception("Error during connection.")
        raise CommsError(f"Error during connection: {format_error_response()}")
    return client_connection


# ============================================================================


def open_connection(
    host=DEFAULT_HOST_ADDR,
    msg_port=DEFAULT_PORT,
    timeout=DEFAULT_TIMEOUT,
    request_retries: int = DEFAULT_RETRIES,
) -> tuple[ClientConnection, ClientSyncResponse]:
    """Establish a connection to the server.

    Confirms the server answers, asks for its other ports, opens all sockets and
    performs the initial client synchronization.

    Raises
    ------
    CommsError
        If connection cannot be established or synchronization fails
    """
    t0 = timer()
    attempts = 0
    context = zmq.Context()
    logger.info("Attempting initial connection to server on {}:{}.", host, msg_port)
    while timer() - t0 < timeout:
        try:
            msg_socket = context.socket(zmq.REQ)
            msg_socket.connect(f"tcp://{host}:{msg_port}")
            logger.info("Initial connection appears successful")
            break
        except zmq.ZMQError as e:
            attempts += 1
            logger.warning("Attempt {} failed to connect with error {}", attempts, e)
            time.sleep(0.05)
            continue
    else:  # timed out
        logger.error("Connection not established.")
        context.term()
        raise CommsError("Connection not established: timed out.")

    ms, mp = msg_socket, msg_port
    temp_connection = ClientConnection(context, ms, ms, ms, host, mp, mp, mp)
    if not _confirm_connection(temp_connection, request_retries=request_retries):
        logger.error("Bad connection - no response from server.")
        temp_connection.msg_socket.setsockopt(zmq.LINGER, 0)
        temp_connection.msg_socket.close()
        context.term()
        raise CommsError("Bad connection - no response from server.")
    logger.info("Initial connection confirmed, now getting other ports.")

    notif_port, post_port = get_other_ports(temp_connection, request_retries)
    temp_connection.msg_socket.setsockopt(zmq.LINGER, 0)
    temp_connection.msg_socket.close()
    client_connection = _open_connection(context, host, msg_port, notif_port, post_port)

    sync_response = client_sync(client_connection, request_retries)
    if sync_response.version != scpilink.__version__:
        logger.critical(
            "Client-server version mismatch: {} vs {}",
            scpilink.__version__,
            sync_response.version,
        )
    logger.info("Connection established on {}", host)
    return client_connection, sync_response


# ============================================================================


def close_connection(client_connection: ClientConnection):
    """Close all sockets and terminate the context."""
    logger.info("Closing connection.")
    for socket in [
        client_connection.msg_socket,
        client_connection.notif_socket,
        client_connection.post_socket,
    ]:
        if isinstance(socket, zmq.Socket) and not socket.closed:
            socket.setsockopt(zmq.LINGER, 0)
            socket.close()
    client_connection.context.term()


# ============================================================================


T = TypeVar("T", bound=Response)


def _send_request(
    client_connection: ClientConnection,
    request: Request,
    request_retries: int = DEFAULT_RETRIES,
) -> T:
    """Send a request to the server and get a response.

    Raises
    ------
    CommsError
        If the server returns an error
    """
    resp = _get_response(client_connection, request, request_retries)
    if isinstance(resp, ErrorResponse):
        logger.error("Error during {}: '{}'", request.command, resp.value)
        raise CommsError(f"Error returned from {request.command}: {resp.value}")
    return cast(T, resp)


def _post_request(client_connection: ClientConnection, request: Request):
    """Send a request without waiting for (or getting) a reply."""
    logger.debug("*POST* (client->): {}", request)
    client_connection.post_socket.send(request.to_msgpack())


# ====================================================================================


def command(
    command_str: str,
    response_type: Type[T] | type[Union[Any, ...]] = "Response",
    posted: bool = False,
) -> Callable[[Callable[..., Any]], Callable[..., T]]:
    """Decorator that marks a client function and validates its handler mapping.

    Args:
        command_str: The command string that identifies this client function
        response_type: The expected response type from the server or Union of types
        posted: True if the function posts the request and expects no reply
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., T]:
        PENDING_COMMAND_VALIDATIONS.append((command_str, func.__name__))

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            result = func(*args, **kwargs)
            return cast(T, result)

        wrapper._command = command_str
        wrapper._response_type = response_type
        wrapper._posted = posted
        wrapper._is_client_method = True
        return wrapper

    return decorator


# ====================================================================================
# -----------------
# INTERFACE FUNCTIONS
# -----------------
# ====================================================================================

# each of these has a corresponding handler in server.py

# -------------------------------------------------------------------------------------
# General server comms
# -------------------------------------------------------------------------------------


@command(CONSTS.COMMS.CLIENT_SYNC, response_type=ClientSyncResponse | ErrorResponse)
def client_sync(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> ClientSyncResponse:
    """Synchronize the client with the server (version and instruments)."""
    calls: scpilink.server.server.handle_client_sync
    return _send_request(
        client_connection, Request(CONSTS.COMMS.CLIENT_SYNC), request_retries
    )


@command(CONSTS.COMMS.GET_OTHER_PORTS, response_type=TupleResponse | ErrorResponse)
def get_other_ports(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> tuple[int, int]:
    """Get the notification and post ports from the server."""
    calls: scpilink.server.server.handle_get_other_ports
    resp = _send_request(
        client_connection, Request(CONSTS.COMMS.GET_OTHER_PORTS), request_retries
    )
    notif_port, post_port = resp.value
    return notif_port, post_port


@command(CONSTS.COMMS.PING, response_type=MsgResponse | ErrorResponse)
def ping(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> str:
    """Send ping request to server. Returns "pong", or "-1.0" on failure."""
    calls: scpilink.server.server.handle_ping
    try:
        _send_request(client_connection, Request(CONSTS.COMMS.PING), request_retries)
        return "pong"
    except CommsError:
        logger.exception("Ping failed.")
        return "-1.0"


@command(CONSTS.COMMS.SHUTDOWN, response_type=MsgResponse | ErrorResponse)
def shutdown_server(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> None:
    """Ask the server to shut down. The connection is closed afterwards."""
    calls: scpilink.server.server.handle_shutdown
    try:
        _send_request(client_connection, Request(CONSTS.COMMS.SHUTDOWN), 1)
        logger.info("Server shutdown initiated successfully")
    except CommsError as e:
        logger.warning("Error during shutdown (may be expected): {}", e)
    close_connection(client_connection)


@command(CONSTS.COMMS.ECHO, response_type=MsgResponse | ErrorResponse)
def echo(
    client_connection: ClientConnection,
    msg: str,
    request_retries: int = DEFAULT_RETRIES,
) -> str:
    """Echo a message through the server."""
    calls: scpilink.server.server.handle_echo
    resp = _send_request(
        client_connection, Request(CONSTS.COMMS.ECHO, {"msg": msg}), request_retries
    )
    return resp.value


@command(CONSTS.COMMS.GET_SERVER_LOG_PATH, response_type=ValueResponse | ErrorResponse)
def get_server_log_path(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> str:
    calls: scpilink.server.server.handle_get_server_log_path
    resp = _send_request(
        client_connection, Request(CONSTS.COMMS.GET_SERVER_LOG_PATH), request_retries
    )
    return resp.value


@command(CONSTS.COMMS.GET_ACTIVITY, response_type=DictResponse | ErrorResponse)
def get_activity(
    client_connection: ClientConnection,
    instrument_id: Optional[str] = None,
    limit: int = 100,
    request_retries: int = DEFAULT_RETRIES,
) -> list[dict]:
    """Latest activity log entries (oldest first), optionally for one instrument."""
    calls: scpilink.server.server.handle_get_activity
    resp = _send_request(
        client_connection,
        Request(
            CONSTS.COMMS.GET_ACTIVITY, {"instrument_id": instrument_id, "limit": limit}
        ),
        request_retries,
    )
    return resp.value["entries"]


# -------------------------------------------------------------------------------------
# Instruments
# -------------------------------------------------------------------------------------


@command(CONSTS.INSTR.LIST, response_type=DictResponse | ErrorResponse)
def list_instruments(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> dict[str, dict]:
    """Instrument info and connection status, keyed by instrument id."""
    calls: scpilink.server.server.handle_list_instruments
    resp = _send_request(client_connection, Request(CONSTS.INSTR.LIST), request_retries)
    return resp.value


@command(CONSTS.INSTR.ADD, response_type=MsgResponse | ErrorResponse)
def add_instrument(
    client_connection: ClientConnection,
    instrument: Instrument,
    request_retries: int = DEFAULT_RETRIES,
) -> str:
    """Add an instrument (and its session) to the server. Returns its id."""
    calls: scpilink.server.server.handle_add_instrument
    resp = _send_request(
        client_connection,
        Request(CONSTS.INSTR.ADD, {"instrument": instrument.to_dict()}),
        request_retries,
    )
    return resp.value


@command(CONSTS.INSTR.REMOVE, response_type=MsgResponse | ErrorResponse)
def remove_instrument(
    client_connection: ClientConnection,
    instrument_id: str,
    request_retries: int = DEFAULT_RETRIES,
) -> str:
    calls: scpilink.server.server.handle_remove_instrument
    resp = _send_request(
        client_connection,
        Request(CONSTS.INSTR.REMOVE, {"instrument_id": instrument_id}),
        request_retries,
    )
    return resp.value


# -------------------------------------------------------------------------------------
# Connections (blocking)
# -------------------------------------------------------------------------------------


@command(CONSTS.CONN.GET_STATUS, response_type=StatusResponse | ErrorResponse)
def conn_get_status(
    client_connection: ClientConnection,
    instrument_id: str,
    request_retries: int = DEFAULT_RETRIES,
) -> StatusResponse:
    calls: scpilink.server.server.handle_conn_get_status
    return _send_request(
        client_connection,
        Request(CONSTS.CONN.GET_STATUS, {"instrument_id": instrument_id}),
        request_retries,
    )


@command(CONSTS.CONN.ACQUIRE, response_type=MsgResponse | ErrorResponse)
def conn_acquire(
    client_connection: ClientConnection,
    instrument_id: str,
    owner: str,
    trace_enabled: bool = True,
    request_retries: int = DEFAULT_RETRIES,
) -> Optional[str]:
    """Acquire the connection for `owner`.

    Returns None on success, else the reason it was refused. Values for the
    owner are published as ValueNotifications with `owner` set.
    """
    calls: scpilink.server.server.handle_conn_acquire
    resp = _send_request(
        client_connection,
        Request(
            CONSTS.CONN.ACQUIRE,
            {"instrument_id": instrument_id, "owner": owner, "trace_enabled": trace_enabled},
        ),
        request_retries,
    )
    return resp.value or None


@command(CONSTS.CONN.RELEASE, response_type=MsgResponse | ErrorResponse)
def conn_release(
    client_connection: ClientConnection,
    instrument_id: str,
    owner: Optional[str] = None,
    request_retries: int = DEFAULT_RETRIES,
) -> None:
    calls: scpilink.server.server.handle_conn_release
    _send_request(
        client_connection,
        Request(CONSTS.CONN.RELEASE, {"instrument_id": instrument_id, "owner": owner}),
        request_retries,
    )


# -------------------------------------------------------------------------------------
# Connections (fire-and-forget)
# -------------------------------------------------------------------------------------


@command(CONSTS.CONN.CONNECT, posted=True)
def conn_connect(
    client_connection: ClientConnection,
    instrument_id: str,
    parameters: Optional[ConnectionParameters] = None,
):
    calls: scpilink.server.server.handle_conn_connect
    params = {"instrument_id": instrument_id}
    if parameters is not None:
        params["parameters"] = parameters.to_dict()
    _post_request(client_connection, Request(CONSTS.CONN.CONNECT, params))


@command(CONSTS.CONN.DISCONNECT, posted=True)
def conn_disconnect(client_connection: ClientConnection, instrument_id: str):
    calls: scpilink.server.server.handle_conn_disconnect
    _post_request(
        client_connection, Request(CONSTS.CONN.DISCONNECT, {"instrument_id": instrument_id})
    )


@command(CONSTS.CONN.DESTROY, posted=True)
def conn_destroy(client_connection: ClientConnection, instrument_id: str):
    calls: scpilink.server.server.handle_conn_destroy
    _post_request(
        client_connection, Request(CONSTS.CONN.DESTROY, {"instrument_id": instrument_id})
    )


@command(CONSTS.CONN.SEND, posted=True)
def conn_send(
    client_connection: ClientConnection,
    instrument_id: str,
    command: str,
    log: bool = True,
    long_operation: bool = False,
):
    calls: scpilink.server.server.handle_conn_send
    _post_request(
        client_connection,
        Request(
            CONSTS.CONN.SEND,
            {
                "instrument_id": instrument_id,
                "command": command,
                "log": log,
                "long_operation": long_operation,
            },
        ),
    )


@command(CONSTS.CONN.DOWNLOAD, posted=True)
def conn_download(
    client_connection: ClientConnection,
    instrument_id: str,
    instructions: DownloadInstructions,
):
    calls: scpilink.server.server.handle_conn_download
    _post_request(
        client_connection,
        Request(
            CONSTS.CONN.DOWNLOAD,
            {"instrument_id": instrument_id, "instructions": instructions.to_dict()},
        ),
    )


@command(CONSTS.CONN.ABORT, posted=True)
def conn_abort(client_connection: ClientConnection, instrument_id: str):
    calls: scpilink.server.server.handle_conn_abort
    _post_request(
        client_connection, Request(CONSTS.CONN.ABORT, {"instrument_id": instrument_id})
    )


@command(CONSTS.CONN.DISMISS_ERROR, posted=True)
def conn_dismiss_error(client_connection: ClientConnection, instrument_id: str):
    calls: scpilink.server.server.handle_conn_dismiss_error
    _post_request(
        client_connection,
        Request(CONSTS.CONN.DISMISS_ERROR, {"instrument_id": instrument_id}),
    )


# ====================================================================================
# Notifications
# ====================================================================================


def subscribe(client_connection: ClientConnection, topic: str):
    logger.debug("Subscribing to {}", topic)
    client_connection.notif_socket.setsockopt(zmq.SUBSCRIBE, topic.encode())


def unsubscribe(client_connection: ClientConnection, topic: str):
    logger.debug("Unsubscribing from {}", topic)
    client_connection.notif_socket.setsockopt(zmq.UNSUBSCRIBE, topic.encode())


def receive_notification(client_connection: ClientConnection) -> Optional[Notification]:
    """Next pending notification, or None if there is none."""
    try:
        _topic, msg = client_connection.notif_socket.recv_multipart(flags=zmq.NOBLOCK)
    except zmq.Again:
        return None
    notif = Notification.from_msgpack(msg)
    # below is rather loquacious
    logger.trace("*NOTIF* (client<-): {}", notif)
    return notif


def start_bg_notif_listener(
    client_connection: ClientConnection,
    on_notification: Optional[Callable[[Notification], None]] = None,
):
    """Poll the SUB socket in an asyncio task, queueing (and dispatching) notifications."""
    qu = asyncio.Queue()

    async def listen(queue):
        logger.info("Starting notification listener")
        while True:
            await asyncio.sleep(0.01)
            try:
                notif = receive_notification(client_connection)
                while notif is not None:
                    queue.put_nowait(notif)
                    if on_notification is not None:
                        on_notification(notif)
                    notif = receive_notification(client_connection)
            except Exception:
                logger.exception("Error in notif listener.")
                break

    task = asyncio.create_task(listen(qu))
    return task, qu


def clean_queue(qu: asyncio.Queue):
    while not qu.empty():
        try:
            qu.get_nowait()
        except asyncio.QueueEmpty:
            break


def queue_to_list(qu: asyncio.Queue, nitems: int = 10) -> list:
    lst = []
    i = 0
    while not qu.empty():
        i += 1
        if i > nitems:
            break
        lst.append(qu.get_nowait())
    return lst


async def wait_for_notif(
    qu: asyncio.Queue, notif_type: Type[Notification], timeout=DEFAULT_TIMEOUT
):
    start = time.time()
    while time.time() - start < timeout:
        try:
            notif = qu.get_nowait()
            if isinstance(notif, notif_type):
                return notif
        except asyncio.QueueEmpty:
            pass
        await asyncio.sleep(0.01)
    raise TimeoutError(f"Timeout waiting for {notif_type} notification.")
