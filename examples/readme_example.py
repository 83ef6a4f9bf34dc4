import scpilink.server
from scpilink.scripting import query

scpilink.server.start_client_log()  # log client messages to ~/.scpilink/client.log

manager = scpilink.server.ConnectionManager()
manager.start_local_server()  # starts a (local) server in a new process
# logs go to ~/.scpilink/server.log

manager.connect()
print(manager.list_instruments())

idn, volts = query(manager, "mock", ["*IDN?", "MEAS:VOLT?"])
print(f"{idn} reads {volts} V")

manager.stop_local_server()
