"""Sessions driven through a real server (running in a thread) and its proxies."""

import asyncio
import threading
import time

import pytest
from loguru import logger

import scpilink
from scpilink.connection import CONN_STATE
from scpilink.instrument import Instrument
from scpilink.scripting import acquired, ensure_connected, query, query_async
from scpilink.server import ConnectionManager, start_server
from scpilink.transport import CONN_ERROR
from scpilink.types import (
    CommsError,
    ConnectionTimings,
    DownloadInstructions,
    MockParameters,
)
from scpilink.util.activity_log import ACTIVITY

PORT = 8950
IDN = "SCPILINK,MOCK-1,0001,0.1"
FAST = ConnectionTimings(
    housekeeping_interval=0.01,
    idn_expected_timeout=0.5,
    combine_if_below=0.05,
)


def make_instruments():
    return {
        "mock": Instrument(
            id="mock",
            connection_parameters=MockParameters(
                responses={"MEAS:VOLT?": "1.2345", "OUTP?": "0"}
            ),
        ),
        "silent": Instrument(
            id="silent", connection_parameters=MockParameters(answer_idn=False)
        ),
    }


def wait_until(manager, predicate, timeout=3.0):
    start = time.time()
    while not predicate():
        assert time.time() - start < timeout, "condition not reached in time"
        if not manager.process_notifications():
            time.sleep(0.01)


def connect_mock(manager, values):
    """Connect `mock` and swallow its identification value."""
    ensure_connected(manager, "mock")
    wait_until(manager, lambda: values)
    values.clear()


def reset_instruments(manager):
    """Leave every instrument idle and unowned for the next test."""
    for instrument_id in ["mock", "silent"]:
        proxy = manager.get_connection(instrument_id)
        proxy.release()
        manager.process_notifications()
        if not proxy.is_idle:
            proxy.disconnect()
            manager.wait_for_state(instrument_id, CONN_STATE.IDLE)


@pytest.fixture(scope="module")
def server():
    thread = threading.Thread(
        target=asyncio.run,
        args=(
            start_server(
                instruments=make_instruments(),
                msg_port=PORT,
                register=False,
                configure_log=False,
                timings=FAST,
            ),
        ),
        daemon=True,
    )
    thread.start()
    yield thread
    manager = ConnectionManager()
    manager.connect(msg_port=PORT)
    manager.stop_server()
    thread.join(timeout=5)
    assert not thread.is_alive()


@pytest.fixture
def values():
    return []


@pytest.fixture
def manager(server, values, request):
    logger.warning("STARTED Test '{}'".format(request.node.originalname))
    manager = ConnectionManager(value_sink=values.append)
    manager.connect(msg_port=PORT)
    yield manager
    if manager.is_connected():
        reset_instruments(manager)
        manager.disconnect()
    logger.warning("COMPLETED Test '{}' \n".format(request.node.originalname))


@pytest.fixture
def other_manager(server):
    manager = ConnectionManager()
    manager.connect(msg_port=PORT)
    yield manager
    manager.disconnect()


class TestServerComms:
    def test_ping_echo(self, manager):
        assert manager.ping() == "pong"
        assert manager.echo("hello") == "hello"

    def test_client_sync(self, manager):
        assert manager.client_sync.version == scpilink.__version__
        assert manager.client_sync.instrument_ids == ["mock", "silent"]

    def test_list_instruments(self, manager):
        info = manager.list_instruments()
        assert set(info) == {"mock", "silent"}
        assert info["mock"]["type"] == "mock"
        assert info["mock"]["state"] == CONN_STATE.IDLE

    def test_unknown_instrument(self, manager):
        with pytest.raises(CommsError, match="Unknown instrument: nope"):
            manager.conn_get_status("nope")

    def test_not_connected_to_server(self):
        manager = ConnectionManager()
        with pytest.raises(RuntimeError):
            manager.ping()
        with pytest.raises(RuntimeError):
            manager.get_connection("mock")


class TestMirroring:
    def test_connect_and_identify(self, manager, values):
        proxy = manager.get_connection("mock")
        assert proxy.is_idle
        proxy.connect()
        manager.wait_for_state("mock", CONN_STATE.CONNECTED)
        wait_until(manager, lambda: values)
        assert values == [IDN]
        assert manager.list_instruments()["mock"]["idn"] == IDN

    def test_second_client_mirrors(self, manager, other_manager):
        proxy = manager.get_connection("mock")
        mirror = other_manager.get_connection("mock")
        proxy.connect()
        other_manager.wait_for_state("mock", CONN_STATE.CONNECTED)
        manager.wait_for_state("mock", CONN_STATE.CONNECTED)
        assert mirror.seq == proxy.seq

        mirror.disconnect()
        manager.wait_for_state("mock", CONN_STATE.IDLE)

    def test_late_proxy_gets_snapshot(self, manager, other_manager):
        manager.get_connection("mock").connect()
        manager.wait_for_state("mock", CONN_STATE.CONNECTED)
        mirror = other_manager.get_connection("mock")
        assert mirror.is_connected

    def test_send_when_idle(self, manager, values):
        manager.get_connection("mock").send("MEAS:VOLT?")
        wait_until(manager, lambda: values)
        assert values == [{"error": "not connected"}]

    def test_idn_timeout(self, manager):
        proxy = manager.get_connection("silent")
        proxy.connect()
        wait_until(
            manager,
            lambda: proxy.is_idle and proxy.error_code == CONN_ERROR.IDN_TIMEOUT,
        )
        proxy.dismiss_error()
        wait_until(manager, lambda: proxy.error is None)
        assert proxy.error_code == CONN_ERROR.IDN_TIMEOUT

    def test_wait_for_state_timeout(self, manager):
        with pytest.raises(TimeoutError):
            manager.wait_for_state("silent", CONN_STATE.CONNECTED, timeout=0.2)

    def test_destroy_and_recreate(self, manager):
        proxy = manager.get_connection("mock")
        proxy.connect()
        manager.wait_for_state("mock", CONN_STATE.CONNECTED)
        seq = proxy.seq

        proxy.destroy()
        manager.wait_for_state("mock", CONN_STATE.IDLE)

        # the next request creates a fresh session, its updates still win
        proxy.connect()
        manager.wait_for_state("mock", CONN_STATE.CONNECTED)
        assert proxy.seq > seq

    def test_drop_connection(self, manager):
        manager.get_connection("mock")
        manager.drop_connection("mock")
        assert "mock" not in manager.sessions


class TestOwnership:
    def test_acquire_conflict(self, manager, other_manager):
        ensure_connected(manager, "mock")
        proxy = manager.get_connection("mock")
        mirror = other_manager.get_connection("mock")

        assert proxy.acquire("alice") is None
        assert mirror.acquire("bob") == "already acquired by alice"
        proxy.release()
        assert mirror.acquire("bob") is None
        mirror.release()

    def test_acquire_when_idle(self, manager):
        assert manager.get_connection("mock").acquire("alice") == "not connected"

    def test_values_go_to_owner_only(self, manager, other_manager, values):
        connect_mock(manager, values)
        mirror_values = []
        other_manager.value_sink = mirror_values.append
        other_manager.get_connection("mock")

        with acquired(manager, "mock", owner="alice") as (proxy, owned):
            proxy.send("MEAS:VOLT?")
            wait_until(manager, lambda: owned)
            assert owned == [1.2345]

        other_manager.process_notifications()
        assert values == []
        assert mirror_values == []

    def test_acquired_refused(self, manager, other_manager):
        ensure_connected(manager, "mock")
        with acquired(other_manager, "mock", owner="bob"):
            with pytest.raises(CommsError, match="already acquired by bob"):
                with acquired(manager, "mock", owner="alice"):
                    pass


class TestScripting:
    def test_query(self, manager):
        answers = query(manager, "mock", ["*IDN?", "MEAS:VOLT?", "*CLS", "OUTP?"])
        assert answers == [IDN, 1.2345, None, 0]

    def test_query_timeout(self, manager):
        with pytest.raises(TimeoutError):
            query(manager, "mock", ["NO:ANSWER?"], timeout=0.3)

    def test_query_unidentified_instrument(self, manager):
        with pytest.raises((CommsError, TimeoutError)):
            query(manager, "silent", ["*IDN?"], timeout=2)

    def test_activity(self, manager):
        query(manager, "mock", ["MEAS:VOLT?"])
        entries = manager.get_activity("mock", limit=2)
        assert [e["type"] for e in entries] == [ACTIVITY["REQUEST"], ACTIVITY["ANSWER"]]
        assert entries[0]["message"] == "MEAS:VOLT?"

    @pytest.mark.asyncio
    async def test_query_async_with_listener(self, manager, values):
        manager.start_notification_listener()
        proxy = manager.get_connection("mock")
        proxy.connect()
        await manager.await_state("mock", CONN_STATE.CONNECTED)
        start = time.time()
        while not values:
            assert time.time() - start < 3
            await asyncio.sleep(0.01)

        assert await query_async(manager, "mock", ["MEAS:VOLT?"]) == [1.2345]

        proxy.disconnect()
        await manager.await_state("mock", CONN_STATE.IDLE)
        manager.disconnect()


class TestTransfers:
    def test_download(self, manager, values):
        connect_mock(manager, values)
        manager.get_connection("mock").download(
            DownloadInstructions(data=b"\x00\x01\x02", destination_file_path="x.bin")
        )
        wait_until(manager, lambda: values)
        (value,) = values
        assert value["logEntry"]["direction"] == "download"
        assert value["logEntry"]["state"] == "done"
        assert value["logEntry"]["dataLength"] == 3


class TestInstruments:
    def test_add_and_remove(self, manager):
        extra = Instrument(id="extra", connection_parameters=MockParameters())
        assert manager.add_instrument(extra) == "extra"
        assert "extra" in manager.list_instruments()
        with pytest.raises(CommsError):
            manager.add_instrument(extra)

        proxy = manager.get_connection("extra")
        proxy.connect()
        manager.wait_for_state("extra", CONN_STATE.CONNECTED)

        assert manager.remove_instrument("extra") == "extra"
        wait_until(manager, lambda: "extra" not in manager.sessions)
        assert "extra" not in manager.list_instruments()
        with pytest.raises(CommsError):
            manager.remove_instrument("extra")


@pytest.mark.slow
def test_background_server_process():
    manager = ConnectionManager()
    manager.start_local_server(msg_port=8960, notif_port=8961, post_port=8962)
    try:
        manager.connect(msg_port=8960)
        assert "mock" in manager.client_sync.instrument_ids
        assert query(manager, "mock", ["MEAS:VOLT?"], owner="bg-test") == [1.2345]
    finally:
        manager.stop_server()
