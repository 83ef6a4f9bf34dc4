"""Watch an instrument's session from a second process.

Start a server first (`scpilink server`), then run this script in two
terminals: the first to acquire the mock instrument, the second sees the
connection state and is refused while the first one holds it.
"""

import time

import scpilink.server
from scpilink.connection import CONN_STATE
from scpilink.util import TEST_LOGLEVEL

scpilink.server.start_client_log(log_to_stdout=True, log_level=TEST_LOGLEVEL)

manager = scpilink.server.ConnectionManager(value_sink=lambda v: print("sink:", v))
manager.connect()

conn = manager.get_connection("mock")
print("mock is", conn.state)
if conn.is_idle:
    conn.connect()
manager.wait_for_state("mock", CONN_STATE.CONNECTED)

err = conn.acquire("example", callback=lambda v: print("owner got:", v))
if err:
    print("could not acquire:", err)
else:
    for _ in range(5):
        conn.send("MEAS:VOLT?")
        time.sleep(0.5)
        manager.process_notifications()
    conn.release()

manager.disconnect()
