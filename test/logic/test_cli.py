from unittest.mock import MagicMock, patch

import click.testing
import pytest

from scpilink.cli import cli
from scpilink.types import CommsError
from scpilink.util import DEFAULT_HOST_ADDR, DEFAULT_LOGLEVEL, DEFAULT_PORT


@pytest.fixture
def cli_runner():
    return click.testing.CliRunner()


@pytest.fixture
def user_instruments_file(tmp_path):
    path = tmp_path / ".scpilink" / "instruments.ini"
    with patch("scpilink.instrument.instconfig.get_user_instruments_file") as mock_get:
        mock_get.return_value = path
        yield path


class TestTree:
    def test_tree(self, cli_runner):
        result = cli_runner.invoke(cli, ["--tree"])
        assert result.exit_code == 0
        for name in ["server", "list", "kill", "ports", "instruments", "query"]:
            assert f"└── {name}" in result.output
        # subcommands of groups are indented
        assert "    └── init" in result.output

    def test_subtree(self, cli_runner):
        result = cli_runner.invoke(cli, ["instruments", "--tree"])
        assert result.exit_code == 0
        assert "└── init" in result.output
        assert "server" not in result.output


class TestServerCLI:
    @patch("scpilink.cli.base.start_server")
    def test_default_values(self, mock_start_server, cli_runner):
        result = cli_runner.invoke(cli, ["server"])
        assert result.exit_code == 0
        mock_start_server.assert_called_once_with(
            instruments_config=None,
            host=DEFAULT_HOST_ADDR,
            msg_port=DEFAULT_PORT,
            notif_port=DEFAULT_PORT + 1,
            post_port=DEFAULT_PORT + 2,
            log_to_file=True,
            log_to_stdout=True,
            log_path="",
            clear_prev_log=True,
            log_level=DEFAULT_LOGLEVEL,
            activity_log_path=None,
        )

    @patch("scpilink.cli.base.start_server")
    def test_all_arguments(self, mock_start_server, cli_runner):
        result = cli_runner.invoke(
            cli,
            [
                "server",
                "--instruments-config",
                "/tmp/instruments.ini",
                "--host-address",
                "localhost",
                "--msg-port",
                "5555",
                "--notif-port",
                "5556",
                "--post-port",
                "5557",
                "--no-log-to-file",
                "--no-log-to-stdout",
                "--log-path",
                "/tmp/server.log",
                "--no-clear-prev-log",
                "--log-level",
                "DEBUG",
                "--activity-log-path",
                "/tmp/activity.jsonl",
            ],
        )
        assert result.exit_code == 0
        kwargs = mock_start_server.call_args.kwargs
        assert kwargs["host"] == "localhost"
        assert (kwargs["msg_port"], kwargs["notif_port"], kwargs["post_port"]) == (
            5555,
            5556,
            5557,
        )
        assert kwargs["instruments_config"] == "/tmp/instruments.ini"
        assert kwargs["log_to_file"] is False
        assert kwargs["clear_prev_log"] is False
        assert kwargs["activity_log_path"] == "/tmp/activity.jsonl"


class TestListCommand:
    def test_no_servers(self, cli_runner):
        with patch("scpilink.cli.base.list_running_servers", return_value=[]):
            result = cli_runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "No servers found" in result.output

    def test_with_servers(self, cli_runner):
        mock_servers = [
            {
                "pid": 12345,
                "timestamp": "2024-01-01_12:00:00",
                "host": "localhost",
                "ports": {"msg": 8850, "notif": 8851, "post": 8852},
                "running": True,
            }
        ]
        with patch("scpilink.cli.base.list_running_servers") as mock_list:
            mock_list.return_value = mock_servers
            result = cli_runner.invoke(cli, ["list"])
            mock_list.assert_called_once()

        assert result.exit_code == 0
        assert "Running scpilink servers:" in result.output
        assert "PID: 12345 (RUNNING)" in result.output
        assert "Started: 2024-01-01_12:00:00" in result.output
        assert "Host: localhost" in result.output
        assert "Ports: msg=8850, notif=8851, post=8852" in result.output


class TestKillCommand:
    def test_no_servers(self, cli_runner):
        with patch("scpilink.cli.base.kill_scpilink_servers", return_value=0):
            result = cli_runner.invoke(cli, ["kill"])
        assert result.exit_code == 0
        assert "No running scpilink servers found" in result.output

    def test_with_servers(self, cli_runner):
        with patch("scpilink.cli.base.kill_scpilink_servers", return_value=2):
            result = cli_runner.invoke(cli, ["kill"])
        assert result.exit_code == 0
        assert "Killed 2 scpilink server(s)" in result.output

    def test_stale_only(self, cli_runner):
        with (
            patch("scpilink.cli.base.cleanup_stale_servers", return_value=3) as cleanup,
            patch("scpilink.cli.base.kill_scpilink_servers") as kill,
        ):
            result = cli_runner.invoke(cli, ["kill", "--stale-only"])
        assert result.exit_code == 0
        assert "Removed 3 stale server record(s)" in result.output
        cleanup.assert_called_once()
        kill.assert_not_called()


class TestPortsCommand:
    def test_no_ports(self, cli_runner):
        with patch("scpilink.cli.base.get_hw_ports", return_value={}):
            result = cli_runner.invoke(cli, ["ports"])
        assert result.exit_code == 0
        assert "No serial ports found" in result.output

    def test_ports(self, cli_runner):
        ports = {"/dev/ttyUSB0": ("USB Serial", "USB VID:PID=0403:6001")}
        with patch("scpilink.cli.base.get_hw_ports", return_value=ports):
            result = cli_runner.invoke(cli, ["ports"])
        assert result.exit_code == 0
        assert "Port: /dev/ttyUSB0" in result.output
        assert "Description: USB Serial" in result.output
        assert "Hardware ID: USB VID:PID=0403:6001" in result.output


class TestInstrumentsCommand:
    def test_list_packaged(self, cli_runner, user_instruments_file):
        result = cli_runner.invoke(cli, ["instruments", "list"])
        assert result.exit_code == 0
        assert "mock" in result.output
        assert "package" in result.output

    def test_list_with_invalid(self, cli_runner, user_instruments_file, tmp_path):
        config = tmp_path / "extra.ini"
        config.write_text("[broken]\ntype = carrier-pigeon\n")
        result = cli_runner.invoke(cli, ["instruments", "list", "-c", str(config)])
        assert result.exit_code == 0
        assert "broken" in result.output
        assert "invalid" in result.output

    def test_list_missing_config(self, cli_runner, user_instruments_file, tmp_path):
        result = cli_runner.invoke(
            cli, ["instruments", "list", "-c", str(tmp_path / "missing.ini")]
        )
        assert result.exit_code == 1

    def test_init(self, cli_runner, user_instruments_file):
        result = cli_runner.invoke(cli, ["instruments", "init"])
        assert result.exit_code == 0
        assert user_instruments_file.exists()
        assert "[mock]" in user_instruments_file.read_text()

    def test_init_path(self, cli_runner, tmp_path):
        path = tmp_path / "custom.ini"
        result = cli_runner.invoke(cli, ["instruments", "init", "--path", str(path)])
        assert result.exit_code == 0
        assert str(path) in result.output
        assert "[example-lan]" in path.read_text()


class TestQueryCommand:
    @patch("scpilink.scripting.query", return_value=["ACME,1,2,3", None, 1.5])
    @patch("scpilink.server.connection_manager.ConnectionManager")
    def test_query(self, mock_manager_cls, mock_query, cli_runner):
        result = cli_runner.invoke(
            cli, ["query", "dmm", "*IDN?", "*CLS", "MEAS:VOLT?", "-o", "me", "-mp", "9000"]
        )
        assert result.exit_code == 0
        manager = mock_manager_cls.return_value
        manager.connect.assert_called_once_with(DEFAULT_HOST_ADDR, 9000, timeout=5)
        mock_query.assert_called_once_with(
            manager, "dmm", ["*IDN?", "*CLS", "MEAS:VOLT?"], owner="me", timeout=5
        )
        assert "*IDN? -> ACME,1,2,3" in result.output
        assert "MEAS:VOLT? -> 1.5" in result.output
        assert "*CLS" not in result.output
        manager.disconnect.assert_called_once()

    @patch("scpilink.scripting.query", side_effect=CommsError("Cannot acquire dmm"))
    @patch("scpilink.server.connection_manager.ConnectionManager")
    def test_query_error(self, mock_manager_cls, mock_query, cli_runner):
        result = cli_runner.invoke(cli, ["query", "dmm", "*IDN?"])
        assert result.exit_code == 1
        assert "Error: Cannot acquire dmm" in result.output
        mock_manager_cls.return_value.disconnect.assert_called_once()

    def test_query_needs_commands(self, cli_runner):
        result = cli_runner.invoke(cli, ["query", "dmm"])
        assert result.exit_code != 0
