"""A session inside this process, no server involved."""

import asyncio

from scpilink.connection import Connection
from scpilink.instrument import Instrument
from scpilink.types import DownloadInstructions, MockParameters
from scpilink.util import start_client_log


async def main():
    start_client_log(log_to_stdout=True, log_level="DEBUG")
    inst = Instrument(
        "bench",
        connection_parameters=MockParameters(responses={"MEAS:VOLT?": "1.5"}),
    )
    conn = Connection(inst, value_sink=lambda v: print("value:", v))
    conn.connect()
    await asyncio.sleep(0.2)
    print(conn.state, inst.idn)

    conn.send("MEAS:VOLT?")
    conn.download(
        DownloadInstructions(
            data=b"10,20,30\n" * 100,
            destination_file_path="list.csv",
            chunk_size=256,
        )
    )
    await asyncio.sleep(0.5)

    conn.disconnect()
    await asyncio.sleep(0.1)
    print(conn.state)


if __name__ == "__main__":
    asyncio.run(main())
