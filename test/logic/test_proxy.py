from unittest.mock import MagicMock, patch

import pytest

import scpilink.server.client as client
from scpilink.connection import CONN_STATE
from scpilink.server import ConnectionProxy
from scpilink.transport import CONN_ERROR
from scpilink.types import (
    ConnectionStatusUpdate,
    DownloadInstructions,
    StatusResponse,
    ValueNotification,
)


def status(seq, state=CONN_STATE.CONNECTED, error_code=CONN_ERROR.NONE, error=None):
    return ConnectionStatusUpdate(
        instrument_id="dmm", state=state, error_code=error_code, error=error, seq=seq
    )


@pytest.fixture
def client_connection():
    return MagicMock()


@pytest.fixture
def proxy(client_connection):
    snapshot = StatusResponse(
        instrument_id="dmm",
        state=CONN_STATE.IDLE,
        error_code=CONN_ERROR.NONE,
        error=None,
        seq=3,
    )
    with patch.object(client, "conn_get_status", return_value=snapshot) as get_status:
        proxy = ConnectionProxy("dmm", client_connection, value_sink=MagicMock())
        get_status.assert_called_once_with(client_connection, "dmm")
    return proxy


class TestStatus:
    def test_initial_snapshot(self, proxy):
        assert proxy.seq == 3
        assert proxy.is_idle

    def test_newer_status_applied(self, proxy):
        assert proxy.apply_status(status(4, error_code=CONN_ERROR.REFUSED, error="no"))
        assert proxy.is_connected
        assert proxy.error_code == CONN_ERROR.REFUSED
        assert proxy.error == "no"
        assert proxy.status == {
            "state": CONN_STATE.CONNECTED,
            "error_code": CONN_ERROR.REFUSED,
            "error": "no",
        }

    def test_stale_status_ignored(self, proxy):
        proxy.apply_status(status(10))
        assert not proxy.apply_status(status(9, state=CONN_STATE.IDLE))
        assert not proxy.apply_status(status(10, state=CONN_STATE.IDLE))
        assert proxy.is_connected
        assert proxy.seq == 10

    def test_out_of_order_delivery(self, proxy):
        for seq, state in [
            (5, CONN_STATE.CONNECTING),
            (7, CONN_STATE.DISCONNECTING),
            (6, CONN_STATE.CONNECTED),
        ]:
            proxy.apply_status(status(seq, state=state))
        assert proxy.state == CONN_STATE.DISCONNECTING


class TestValues:
    def test_unowned_values_go_to_sink(self, proxy):
        proxy.on_value(ValueNotification(instrument_id="dmm", value=1.5))
        proxy.value_sink.assert_called_once_with(1.5)

    @patch.object(client, "conn_acquire", return_value=None)
    def test_owned_values_go_to_owner(self, mock_acquire, proxy, client_connection):
        owned = []
        assert proxy.acquire("me", trace_enabled=False, callback=owned.append) is None
        mock_acquire.assert_called_once_with(client_connection, "dmm", "me", False)
        assert proxy.exclusive_owner == "me"

        proxy.on_value(ValueNotification(instrument_id="dmm", owner="me", value="A"))
        proxy.on_value(ValueNotification(instrument_id="dmm", owner="other", value="B"))
        assert owned == ["A"]
        proxy.value_sink.assert_not_called()

    def test_values_for_other_owner_dropped(self, proxy):
        proxy.on_value(ValueNotification(instrument_id="dmm", owner="other", value="B"))
        proxy.value_sink.assert_not_called()

    @patch.object(client, "conn_acquire", return_value="already acquired by gui")
    def test_refused_acquire(self, mock_acquire, proxy):
        assert proxy.acquire("me", callback=print) == "already acquired by gui"
        assert proxy.exclusive_owner is None

    @patch.object(client, "conn_release")
    @patch.object(client, "conn_acquire", return_value=None)
    def test_release(self, mock_acquire, mock_release, proxy, client_connection):
        owned = []
        proxy.acquire("me", callback=owned.append)
        proxy.release()
        mock_release.assert_called_once_with(client_connection, "dmm", "me")
        assert proxy.exclusive_owner is None
        proxy.on_value(ValueNotification(instrument_id="dmm", owner="me", value="A"))
        assert owned == []

    def test_failing_sink_is_contained(self, proxy):
        proxy.value_sink.side_effect = RuntimeError("boom")
        proxy.on_value(ValueNotification(instrument_id="dmm", value=1))


class TestForwarding:
    @patch.object(client, "conn_send")
    def test_send(self, mock_send, proxy, client_connection):
        proxy.send("*RST")
        mock_send.assert_called_once_with(client_connection, "dmm", "*RST", True, False)

    @patch.object(client, "conn_connect")
    def test_connect(self, mock_connect, proxy, client_connection):
        proxy.connect()
        mock_connect.assert_called_once_with(client_connection, "dmm", None)
        # the proxy only changes state through published updates
        assert proxy.is_idle

    @pytest.mark.parametrize(
        "method, client_func",
        [
            ("disconnect", "conn_disconnect"),
            ("destroy", "conn_destroy"),
            ("abort_long_operation", "conn_abort"),
            ("dismiss_error", "conn_dismiss_error"),
        ],
    )
    def test_no_argument_operations(self, method, client_func, proxy, client_connection):
        with patch.object(client, client_func) as mock_func:
            getattr(proxy, method)()
            mock_func.assert_called_once_with(client_connection, "dmm")

    @patch.object(client, "conn_download")
    def test_download(self, mock_download, proxy, client_connection):
        instructions = DownloadInstructions(data=b"abc")
        proxy.download(instructions)
        mock_download.assert_called_once_with(client_connection, "dmm", instructions)
