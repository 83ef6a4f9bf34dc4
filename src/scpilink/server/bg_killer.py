"""Bookkeeping of running servers.

Each server writes `~/.scpilink/running_servers/server_<pid>.json` on start and
removes it on a clean exit. Only one server per machine is expected to run (the
serial ports can only be opened once), so starting a server kills the others.
"""

import os
from pathlib import Path

import psutil
import simplejson as json
from loguru import logger

from scpilink.util.defaults import USER_DIR_NAME


def get_servers_dir() -> Path:
    """Get the directory for storing server PID files."""
    servers_dir = Path.home() / USER_DIR_NAME / "running_servers"
    servers_dir.mkdir(parents=True, exist_ok=True)
    return servers_dir


def _read_pid_file(pid_file: Path) -> dict:
    with pid_file.open() as f:
        return json.load(f)


def list_running_servers() -> list[dict]:
    """Info about every registered server, with a `running` flag."""
    servers = []
    for pid_file in get_servers_dir().glob("server_*.json"):
        try:
            server_info = _read_pid_file(pid_file)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable server file {}: {}", pid_file, e)
            continue
        server_info["running"] = psutil.pid_exists(server_info["pid"])
        servers.append(server_info)
    return servers


def kill_scpilink_servers() -> int:
    """Kill every registered server except the calling process. Returns the count."""
    killed = 0
    for pid_file in get_servers_dir().glob("server_*.json"):
        try:
            server_info = _read_pid_file(pid_file)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error processing {}: {}", pid_file, e)
            continue

        pid = server_info["pid"]
        if pid == os.getpid():
            continue
        try:
            proc = psutil.Process(pid)
            logger.info("Killing server PID {} started at {}", pid, server_info["timestamp"])
            proc.kill()
            killed += 1
        except psutil.NoSuchProcess:
            logger.debug("Server PID {} no longer exists", pid)
        except psutil.AccessDenied:
            logger.error("Not allowed to kill server PID {}", pid)
            continue

        pid_file.unlink(missing_ok=True)

    return killed


def cleanup_stale_servers() -> int:
    """Remove PID files of servers that are gone (or unreadable). Returns the count."""
    removed = 0
    for pid_file in get_servers_dir().glob("server_*.json"):
        try:
            stale = not psutil.pid_exists(_read_pid_file(pid_file)["pid"])
        except (OSError, KeyError, json.JSONDecodeError):
            stale = True
        if stale:
            pid_file.unlink(missing_ok=True)
            removed += 1
    return removed


if __name__ == "__main__":
    killed = kill_scpilink_servers()
    logger.info("Killed {} scpilink server processes", killed)
