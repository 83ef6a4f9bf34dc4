# -*- coding: utf-8 -*-
"""
Server implementation of the client-server interface.

The server is the context that owns the real `Connection`s. It runs on one asyncio
loop with three zmq sockets:

- ROUTER (msg port): blocking requests, each answered with a Response
- PULL (post port): fire-and-forget requests, never answered
- PUB (notif port): `[topic, Notification]` frames; connection status and values
  are published under `instrument/<id>/...`, everything else under `server/...`

Handlers are registered with @handler, which also records which client functions
call them:

1. Each handler is decorated with @handler(command, *client_functions, posted=...)
2. The request_router maps incoming requests to the registered handler
3. Handlers for `CONSTS.CONN.*` commands get the instrument's session looked up
4. Handlers use _send_response to reply (a no-op for posted requests)

The protocol correspondence can be validated using:
assert_valid_handler_client_correspondence()
"""
# ============================================================================

import asyncio
import itertools
import os
from datetime import datetime
from functools import partial, wraps
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import simplejson as json
import zmq
import zmq.asyncio
from loguru import logger
from setproctitle import setproctitle

import scpilink
import scpilink.util
from scpilink.connection.connection import Connection
from scpilink.connection.registry import SessionRegistry
from scpilink.instrument import Instrument, load_instruments
from scpilink.server.bg_killer import get_servers_dir, kill_scpilink_servers
from scpilink.types import (
    CONSTS,
    HANDLER_REGISTRY,
    ClientSyncResponse,
    ConnectionParameters,
    ConnectionTimings,
    DictResponse,
    DownloadInstructions,
    ErrorResponse,
    HandlerInfo,
    InstrumentAdded,
    InstrumentRemoved,
    MsgResponse,
    Notification,
    Request,
    Response,
    ServerConnection,
    StatusResponse,
    TupleResponse,
    ValueNotification,
    ValueResponse,
)
from scpilink.util import (
    DEFAULT_HOST_ADDR,
    DEFAULT_LOGLEVEL,
    DEFAULT_PORT,
    ActivityLog,
    format_error_response,
)

# ============================================================================


def register_server(host: str, ports: tuple[int, int, int]) -> Path:
    """Register a running server in the PID directory."""
    pid = os.getpid()
    timestamp = datetime.now().strftime("%Y-%m-%d_%H:%M:%S")

    server_info = {
        "pid": pid,
        "timestamp": timestamp,
        "host": host,
        "ports": {"msg": ports[0], "notif": ports[1], "post": ports[2]},
    }

    pid_file = get_servers_dir() / f"server_{pid}.json"
    with pid_file.open("w") as f:
        json.dump(server_info, f, indent=2)

    return pid_file


# ============================================================================


async def _send_response(
    server_connection: ServerConnection,
    req_identity: Optional[bytes],
    response: Response,
):
    if req_identity is None:
        # posted request: nobody is waiting for an answer
        if isinstance(response, ErrorResponse):
            logger.error("*POSTED ERROR*: {}", response.value)
        return
    logger.debug("*RESPONSE* (server->): {}", response)
    await server_connection.msg_socket.send_multipart(
        [req_identity, b"", response.to_msgpack()]
    )


def _queue_notification(server_connection: ServerConnection, notif: Notification):
    server_connection.notif_queue.put_nowait(notif)


def _publish_value(
    server_connection: ServerConnection, instrument_id: str, value: Any, owner: str = ""
):
    _queue_notification(
        server_connection,
        ValueNotification(instrument_id=instrument_id, owner=owner, value=value),
    )


def _new_session(
    server_connection: ServerConnection, sessions: SessionRegistry, instrument: Instrument
) -> Connection:
    return sessions.add(
        Connection(
            instrument,
            activity_log=server_connection.activity_log,
            value_sink=partial(_publish_value, server_connection, instrument.id),
            status_publisher=partial(_queue_notification, server_connection),
            timings=server_connection.timings,
            seq_source=server_connection.seq_source,
        )
    )


# ============================================================================


async def _publish_notifications(server_connection: ServerConnection):
    # limit to 10 notifs per loop, also need to check for msgs
    for _ in range(10):
        if server_connection.notif_queue.empty():
            break
        notif: Notification = server_connection.notif_queue.get_nowait()
        try:
            # below is rather loquacious
            logger.trace("*NOTIF* (server->): {}", notif)
            await server_connection.notif_socket.send_multipart(
                [notif.get_topic().encode(), notif.to_msgpack()]
            )
        except zmq.ZMQError:
            logger.exception("ERROR SENDING NOTIF {}.", notif)


async def _handle_raw_request(
    server_connection: ServerConnection,
    req_identity: Optional[bytes],
    sessions: SessionRegistry,
    raw: bytes,
):
    try:
        request = Request.from_msgpack(raw)
    except Exception:
        logger.exception("Request unpacking error:")
        await _send_response(
            server_connection, req_identity, ErrorResponse(value=format_error_response())
        )
        return

    try:
        await request_router(server_connection, req_identity, sessions, request)
    except Exception:
        logger.exception("Uncaught error in request_router.")
        await _send_response(
            server_connection, req_identity, ErrorResponse(value=format_error_response())
        )


async def client_handler(server_connection: ServerConnection, sessions: SessionRegistry):
    while not server_connection.shutdown_requested:
        await _publish_notifications(server_connection)

        busy = False
        try:
            req_identity, _empty, raw = await server_connection.msg_socket.recv_multipart(
                zmq.NOBLOCK
            )
            busy = True
            await _handle_raw_request(server_connection, req_identity, sessions, raw)
        except zmq.error.Again:
            pass

        try:
            raw = await server_connection.post_socket.recv(zmq.NOBLOCK)
            busy = True
            await _handle_raw_request(server_connection, None, sessions, raw)
        except zmq.error.Again:
            pass

        # yield to connection timers and transports
        await asyncio.sleep(0 if busy else 0.001)

    # flush what the shutdown produced
    await _publish_notifications(server_connection)
    logger.info("Client handler exiting due to shutdown request")


# ============================================================================


async def start_server(
    instruments_config: Optional[str] = None,
    host: str = DEFAULT_HOST_ADDR,
    msg_port: int = DEFAULT_PORT,
    notif_port: Optional[int] = None,
    post_port: Optional[int] = None,
    log_to_file: bool = True,
    log_to_stdout: bool = False,
    log_path: str = "",
    clear_prev_log: bool = True,
    log_level: str = DEFAULT_LOGLEVEL,
    instruments: Optional[dict[str, Instrument]] = None,
    timings: Optional[ConnectionTimings] = None,
    activity_log_path: Optional[str] = None,
    register: bool = True,
    configure_log: bool = True,
):
    """Run a server until a client asks it to shut down.

    Parameters
    ----------
    instruments_config : str, optional
        Instrument INI file, read after the user's own instruments file
    host, msg_port, notif_port, post_port
        Where to bind. The notif and post ports default to msg_port + 1 and + 2
    instruments : dict[str, Instrument], optional
        Use these instruments instead of loading any config
    timings : ConnectionTimings, optional
        Session timings, shared by all connections
    activity_log_path : str, optional
        Also append activity entries to this JSON-lines file
    register : bool
        Kill other servers, set the process title and write a PID file.
        Disable when running a server inside another process (tests)
    configure_log : bool
        Start the server log. Disable when the host process already logs
    """
    notif_port = notif_port or msg_port + 1
    post_port = post_port or msg_port + 2

    pid_file = None
    if register:
        kill_scpilink_servers()  # only one server per machine at a time!
        timestamp = datetime.now().strftime("%Y-%m-%d_%H:%M:%S")
        setproctitle(f"scpilink-server_{timestamp}")
        pid_file = register_server(host, (msg_port, notif_port, post_port))

    if configure_log:
        scpilink.util.start_server_log(
            log_to_file=log_to_file,
            log_to_stdout=log_to_stdout,
            log_path=log_path,
            clear_prev=clear_prev_log,
            log_level=log_level,
        )

    logger.info("Starting msg server on {}:{}", host, msg_port)

    if instruments is None:
        instruments = load_instruments(instruments_config)
    logger.info("Serving instruments: {}", list(instruments))

    context = zmq.asyncio.Context()
    try:
        msg_socket = context.socket(zmq.ROUTER)
        msg_socket.bind(f"tcp://{host}:{msg_port}")  # bind on server side
        notif_socket = context.socket(zmq.PUB)
        notif_socket.bind(f"tcp://{host}:{notif_port}")
        post_socket = context.socket(zmq.PULL)
        post_socket.bind(f"tcp://{host}:{post_port}")
    except zmq.ZMQError:
        logger.exception("Error opening server-side connection.")
        context.destroy(linger=0)
        raise

    server_connection = ServerConnection(
        msg_socket=msg_socket,
        notif_socket=notif_socket,
        post_socket=post_socket,
        host=host,
        msg_port=msg_port,
        notif_port=notif_port,
        post_port=post_port,
        notif_queue=asyncio.Queue(),
        activity_log=ActivityLog(activity_log_path),
        timings=timings or ConnectionTimings(),
        instruments=dict(instruments),
        context=context,
        seq_source=itertools.count(1).__next__,
    )
    sessions = SessionRegistry()

    try:
        for instrument in server_connection.instruments.values():
            _new_session(server_connection, sessions, instrument)
        await client_handler(server_connection, sessions)
    finally:
        logger.info("Closing all sessions.")
        sessions.close_all()
        # let transports report their disconnects
        await asyncio.sleep(0.1)
        for socket in [msg_socket, notif_socket, post_socket]:
            socket.setsockopt(zmq.LINGER, 0)
            socket.close()
        context.term()
        if pid_file is not None:
            pid_file.unlink(missing_ok=True)
        logger.info("Server stopped.")


# ============================================================================


# this function is essentially the 'server'
async def request_router(
    server_connection: ServerConnection,
    req_identity: Optional[bytes],
    sessions: SessionRegistry,
    request: Request,
):
    if req_identity is None:
        logger.debug("*POST* (server<-): {}", request)
    else:
        logger.debug("*REQUEST* (server<-): {}", request)

    info = HANDLER_REGISTRY.get(request.command)
    if info is None:
        logger.error("Unknown request: {}", request.command)
        await _send_response(
            server_connection,
            req_identity,
            ErrorResponse(value=f"Unknown request: {request.command}"),
        )
        return

    # first get the instrument's session if needed
    session = None
    if request.command.startswith("CONSTS.CONN."):
        instrument_id = request.params.get("instrument_id")
        session = sessions.get(instrument_id)
        if session is None and instrument_id in server_connection.instruments:
            # re-created after a destroy
            session = _new_session(
                server_connection, sessions, server_connection.instruments[instrument_id]
            )
        if session is None:
            logger.error(
                "No instrument matching instrument_id: {}, currently serving: {}",
                instrument_id,
                sessions.ids(),
            )
            await _send_response(
                server_connection,
                req_identity,
                ErrorResponse(value=f"Unknown instrument: {instrument_id}"),
            )
            return

    await info.handler_func(server_connection, req_identity, sessions, session, request)


# ============================================================================
# ============== Handlers
# ============================================================================


def handler(
    command: str,
    *client_methods: str,
    posted: bool = False,
) -> Callable[[Callable[..., Awaitable[None]]], Callable[..., Awaitable[None]]]:
    """Decorator that registers a server handler and its client functions.

    Args:
        command: The command string that identifies this handler
        *client_methods: Names of client functions that use this handler
        posted: True if requests arrive on the PULL socket and get no reply

    Example:
        @handler(CONSTS.CONN.SEND, "conn_send", posted=True)
        async def handle_conn_send(...):
            ...
    """

    def decorator(func: Callable[..., Awaitable[None]]) -> Callable[..., Awaitable[None]]:
        @wraps(func)
        async def wrapper(
            server_connection: ServerConnection,
            req_identity: Optional[bytes],
            sessions: SessionRegistry,
            session: Optional[Connection],
            request: Request,
        ) -> None:
            if posted != (req_identity is None):
                logger.warning(
                    "{} arrived {} but is a {} command",
                    command,
                    "posted" if req_identity is None else "as a request",
                    "posted" if posted else "request",
                )
            await func(server_connection, req_identity, sessions, session, request)

        HANDLER_REGISTRY[command] = HandlerInfo(
            handler_func=wrapper,
            client_methods=list(client_methods),
            command=command,
            posted=posted,
        )
        return wrapper

    return decorator


# ============================================================================


@handler(CONSTS.COMMS.PING, "ping")
async def handle_ping(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    """Handle ping request from client."""
    handles: scpilink.server.client.ping
    await _send_response(
        server_connection, req_identity, MsgResponse(value=CONSTS.COMMS.PONG)
    )


@handler(CONSTS.COMMS.SHUTDOWN, "shutdown_server")
async def handle_shutdown(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    handles: scpilink.server.client.shutdown_server
    logger.info("Shutting down server.")
    server_connection.shutdown_requested = True
    await _send_response(
        server_connection, req_identity, MsgResponse(value="Shutting down")
    )


@handler(CONSTS.COMMS.ECHO, "echo")
async def handle_echo(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    handles: scpilink.server.client.echo
    await _send_response(
        server_connection, req_identity, MsgResponse(value=request.params["msg"])
    )


@handler(CONSTS.COMMS.GET_SERVER_LOG_PATH, "get_server_log_path")
async def handle_get_server_log_path(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    handles: scpilink.server.client.get_server_log_path
    log_path = scpilink.util.get_log_filename()
    logger.info("Server log path: {}", log_path)
    await _send_response(server_connection, req_identity, ValueResponse(value=log_path))


@handler(CONSTS.COMMS.GET_OTHER_PORTS, "get_other_ports")
async def handle_get_other_ports(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    handles: scpilink.server.client.get_other_ports
    await _send_response(
        server_connection,
        req_identity,
        TupleResponse(value=(server_connection.notif_port, server_connection.post_port)),
    )


@handler(CONSTS.COMMS.CLIENT_SYNC, "client_sync")
async def handle_client_sync(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    handles: scpilink.server.client.client_sync
    await _send_response(
        server_connection,
        req_identity,
        ClientSyncResponse(
            version=scpilink.__version__,
            instrument_ids=list(server_connection.instruments),
        ),
    )


@handler(CONSTS.COMMS.GET_ACTIVITY, "get_activity")
async def handle_get_activity(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    handles: scpilink.server.client.get_activity
    entries = server_connection.activity_log.entries(request.params.get("instrument_id"))
    limit = request.params.get("limit") or len(entries)
    await _send_response(
        server_connection,
        req_identity,
        DictResponse(
            value={
                "entries": [
                    {
                        "id": e.id,
                        "oid": e.oid,
                        "type": e.type,
                        "message": e.message,
                        "dataLength": len(e.data) if e.data is not None else None,
                        "date": e.date,
                    }
                    for e in entries[-limit:]
                ]
            }
        ),
    )


# ============================================================================
# Instruments


@handler(CONSTS.INSTR.LIST, "list_instruments")
async def handle_list_instruments(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    handles: scpilink.server.client.list_instruments
    info = {}
    for inst_id, instrument in server_connection.instruments.items():
        info[inst_id] = instrument.get_info()
        conn = sessions.get(inst_id)
        if conn is not None:
            info[inst_id].update(conn.status)
    await _send_response(server_connection, req_identity, DictResponse(value=info))


@handler(CONSTS.INSTR.ADD, "add_instrument")
async def handle_add_instrument(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    handles: scpilink.server.client.add_instrument
    try:
        instrument = Instrument.from_dict(request.params["instrument"])
        if instrument.id in server_connection.instruments:
            raise ValueError(f"Instrument {instrument.id} already exists")
        server_connection.instruments[instrument.id] = instrument
        _new_session(server_connection, sessions, instrument)
        _queue_notification(server_connection, InstrumentAdded(instrument_id=instrument.id))
        logger.info("Added instrument {}", instrument.id)
        await _send_response(server_connection, req_identity, MsgResponse(value=instrument.id))
    except Exception:
        logger.exception("Error adding instrument.")
        await _send_response(
            server_connection, req_identity, ErrorResponse(value=format_error_response())
        )


@handler(CONSTS.INSTR.REMOVE, "remove_instrument")
async def handle_remove_instrument(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: None,
    request: Request,
):
    handles: scpilink.server.client.remove_instrument
    instrument_id = request.params["instrument_id"]
    if server_connection.instruments.pop(instrument_id, None) is None:
        await _send_response(
            server_connection,
            req_identity,
            ErrorResponse(value=f"Unknown instrument: {instrument_id}"),
        )
        return
    sessions.remove(instrument_id)
    _queue_notification(server_connection, InstrumentRemoved(instrument_id=instrument_id))
    logger.info("Removed instrument {}", instrument_id)
    await _send_response(server_connection, req_identity, MsgResponse(value=instrument_id))


# ============================================================================
# Connections


@handler(CONSTS.CONN.GET_STATUS, "conn_get_status")
async def handle_conn_get_status(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_get_status
    await _send_response(
        server_connection,
        req_identity,
        StatusResponse(
            instrument_id=session.instrument_id,
            state=session.state,
            error_code=session.error_code,
            error=session.error,
            seq=session.seq,
        ),
    )


@handler(CONSTS.CONN.ACQUIRE, "conn_acquire")
async def handle_conn_acquire(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_acquire
    owner = request.params["owner"]
    err = session.acquire(
        owner,
        trace_enabled=request.params.get("trace_enabled", True),
        callback=partial(_publish_value, server_connection, session.instrument_id, owner=owner),
    )
    await _send_response(server_connection, req_identity, MsgResponse(value=err or ""))


@handler(CONSTS.CONN.RELEASE, "conn_release")
async def handle_conn_release(
    server_connection: ServerConnection,
    req_identity: bytes,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_release
    session.release(request.params.get("owner"))
    await _send_response(server_connection, req_identity, MsgResponse(value="released"))


@handler(CONSTS.CONN.CONNECT, "conn_connect", posted=True)
async def handle_conn_connect(
    server_connection: ServerConnection,
    req_identity: None,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_connect
    parameters = request.params.get("parameters")
    session.connect(
        ConnectionParameters.from_dict(parameters) if parameters is not None else None
    )


@handler(CONSTS.CONN.DISCONNECT, "conn_disconnect", posted=True)
async def handle_conn_disconnect(
    server_connection: ServerConnection,
    req_identity: None,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_disconnect
    session.disconnect()


@handler(CONSTS.CONN.DESTROY, "conn_destroy", posted=True)
async def handle_conn_destroy(
    server_connection: ServerConnection,
    req_identity: None,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_destroy
    # a fresh session is created on the next request for this instrument
    sessions.remove(session.instrument_id)


@handler(CONSTS.CONN.SEND, "conn_send", posted=True)
async def handle_conn_send(
    server_connection: ServerConnection,
    req_identity: None,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_send
    session.send(
        request.params["command"],
        log=request.params.get("log", True),
        long_operation=request.params.get("long_operation", False),
    )


@handler(CONSTS.CONN.DOWNLOAD, "conn_download", posted=True)
async def handle_conn_download(
    server_connection: ServerConnection,
    req_identity: None,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_download
    session.download(DownloadInstructions.from_dict(request.params["instructions"]))


@handler(CONSTS.CONN.ABORT, "conn_abort", posted=True)
async def handle_conn_abort(
    server_connection: ServerConnection,
    req_identity: None,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_abort
    session.abort_long_operation()


@handler(CONSTS.CONN.DISMISS_ERROR, "conn_dismiss_error", posted=True)
async def handle_conn_dismiss_error(
    server_connection: ServerConnection,
    req_identity: None,
    sessions: SessionRegistry,
    session: Connection,
    request: Request,
):
    handles: scpilink.server.client.conn_dismiss_error
    session.dismiss_error()
