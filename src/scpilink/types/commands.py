"""Command strings shared by client and server."""

import types

CONSTS = types.SimpleNamespace()

# general server comms
CONSTS.COMMS = types.SimpleNamespace()
CONSTS.COMMS.PING = "CONSTS.COMMS.PING"
CONSTS.COMMS.PONG = "CONSTS.COMMS.PONG"
CONSTS.COMMS.ECHO = "CONSTS.COMMS.ECHO"
CONSTS.COMMS.SHUTDOWN = "CONSTS.COMMS.SHUTDOWN"
CONSTS.COMMS.CLIENT_SYNC = "CONSTS.COMMS.CLIENT_SYNC"
CONSTS.COMMS.GET_OTHER_PORTS = "CONSTS.COMMS.GET_OTHER_PORTS"
CONSTS.COMMS.GET_SERVER_LOG_PATH = "CONSTS.COMMS.GET_SERVER_LOG_PATH"
CONSTS.COMMS.GET_ACTIVITY = "CONSTS.COMMS.GET_ACTIVITY"

# instrument lifecycle on the server
CONSTS.INSTR = types.SimpleNamespace()
CONSTS.INSTR.LIST = "CONSTS.INSTR.LIST"
CONSTS.INSTR.ADD = "CONSTS.INSTR.ADD"
CONSTS.INSTR.REMOVE = "CONSTS.INSTR.REMOVE"

# per-instrument connection operations, keyed by params["instrument_id"]
CONSTS.CONN = types.SimpleNamespace()
CONSTS.CONN.GET_STATUS = "CONSTS.CONN.GET_STATUS"
CONSTS.CONN.CONNECT = "CONSTS.CONN.CONNECT"
CONSTS.CONN.DISCONNECT = "CONSTS.CONN.DISCONNECT"
CONSTS.CONN.DESTROY = "CONSTS.CONN.DESTROY"
CONSTS.CONN.SEND = "CONSTS.CONN.SEND"
CONSTS.CONN.DOWNLOAD = "CONSTS.CONN.DOWNLOAD"
CONSTS.CONN.ABORT = "CONSTS.CONN.ABORT"
CONSTS.CONN.DISMISS_ERROR = "CONSTS.CONN.DISMISS_ERROR"
CONSTS.CONN.ACQUIRE = "CONSTS.CONN.ACQUIRE"
CONSTS.CONN.RELEASE = "CONSTS.CONN.RELEASE"

# pub/sub topic prefixes
CONSTS.TOPIC = types.SimpleNamespace()
CONSTS.TOPIC.SERVER = "server/"
CONSTS.TOPIC.INSTRUMENT = "instrument/"
