"""Utils for scripting"""

import asyncio
import time
from contextlib import contextmanager
from typing import Any, Generator, Optional

from loguru import logger

import scpilink.server
from scpilink.connection.connection import CONN_STATE
from scpilink.types import CommsError
from scpilink.util import DEFAULT_TIMEOUT


def is_query(command: str) -> bool:
    """True if the instrument answers `command` (its header ends with '?')."""
    parts = command.strip().split(maxsplit=1)
    return bool(parts) and parts[0].endswith("?")


@contextmanager
def acquired(
    manager: scpilink.server.ConnectionManager,
    instrument_id: str,
    owner: str = "script",
    trace_enabled: bool = True,
) -> Generator[tuple[scpilink.server.ConnectionProxy, list[Any]], None, None]:
    """Hold the instrument's connection for `owner` for the duration of the block.

    Yields the proxy and the list the owner's values are appended to.

    Raises
    ------
    CommsError
        If the connection cannot be acquired (not connected, or owned by someone else)
    """
    proxy = manager.get_connection(instrument_id)
    values: list[Any] = []
    err = proxy.acquire(owner, trace_enabled=trace_enabled, callback=values.append)
    if err is not None:
        raise CommsError(f"Cannot acquire {instrument_id}: {err}")
    try:
        yield proxy, values
    finally:
        proxy.release(owner)


def _check_still_connected(proxy: scpilink.server.ConnectionProxy):
    if not proxy.is_connected:
        raise CommsError(
            f"{proxy.instrument_id} is {proxy.state} ({proxy.error_code}: {proxy.error})"
        )


def _wait_for_identification(
    manager: scpilink.server.ConnectionManager, instrument_id: str, timeout: float
):
    # the handshake answer must not end up with the next owner
    start = time.time()
    while time.time() - start < timeout:
        info = manager.list_instruments()[instrument_id]
        if info["idn"]:
            return
        manager.process_notifications()
        _check_still_connected(manager.get_connection(instrument_id))
        time.sleep(0.05)
    raise TimeoutError(f"Timeout waiting for {instrument_id} to identify itself.")


def ensure_connected(
    manager: scpilink.server.ConnectionManager,
    instrument_id: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> scpilink.server.ConnectionProxy:
    """Connect the instrument (if idle) and wait until it is identified."""
    proxy = manager.get_connection(instrument_id)
    if proxy.is_connected:
        return proxy
    if proxy.is_idle:
        logger.info("Connecting to {}", instrument_id)
        proxy.connect()
    manager.wait_for_state(instrument_id, CONN_STATE.CONNECTED, timeout)
    _wait_for_identification(manager, instrument_id, timeout)
    return proxy


def query(
    manager: scpilink.server.ConnectionManager,
    instrument_id: str,
    commands: list[str],
    owner: str = "script",
    timeout: float = DEFAULT_TIMEOUT,
    connect: bool = True,
) -> list[Any]:
    """Send `commands` in order and collect the answers.

    Parameters
    ----------
    manager : ConnectionManager
        A manager connected to a server
    instrument_id : str
        The instrument to talk to
    commands : list[str]
        SCPI commands. Only queries (header ending with '?') wait for an answer
    owner : str, optional
        Name the connection is acquired under, by default "script"
    timeout : float, optional
        Maximum time to wait for each answer (and for connecting)
    connect : bool, optional
        Connect the instrument first if it is idle, by default True

    Returns
    -------
    list
        One entry per command: the parsed answer, or None for non-queries

    Raises
    ------
    CommsError
        If the connection cannot be acquired or drops while waiting
    TimeoutError
        If an answer does not arrive in time
    """
    if connect:
        ensure_connected(manager, instrument_id, timeout)

    answers: list[Any] = []
    with acquired(manager, instrument_id, owner) as (proxy, values):
        for cmd in commands:
            expected = len(values) + 1
            proxy.send(cmd)
            if not is_query(cmd):
                answers.append(None)
                continue
            start = time.time()
            while len(values) < expected:
                if time.time() - start > timeout:
                    raise TimeoutError(f"Timeout waiting for answer to {cmd!r}.")
                if not manager.process_notifications():
                    _check_still_connected(proxy)
                    time.sleep(0.01)
            answers.append(values[expected - 1])
    return answers


async def query_async(
    manager: scpilink.server.ConnectionManager,
    instrument_id: str,
    commands: list[str],
    owner: str = "script",
    timeout: float = DEFAULT_TIMEOUT,
) -> list[Any]:
    """As `query`, inside an event loop. The instrument must already be connected.

    Works with or without the manager's notification listener.
    """
    answers: list[Any] = []
    with acquired(manager, instrument_id, owner) as (proxy, values):
        for cmd in commands:
            expected = len(values) + 1
            proxy.send(cmd)
            if not is_query(cmd):
                answers.append(None)
                continue
            start = time.time()
            while len(values) < expected:
                if time.time() - start > timeout:
                    raise TimeoutError(f"Timeout waiting for answer to {cmd!r}.")
                manager.process_notifications()
                _check_still_connected(proxy)
                await asyncio.sleep(0.01)
            answers.append(values[expected - 1])
    return answers


def query_one(
    manager: scpilink.server.ConnectionManager,
    instrument_id: str,
    command: str,
    owner: str = "script",
    timeout: float = DEFAULT_TIMEOUT,
) -> Optional[Any]:
    """Single-command `query`."""
    return query(manager, instrument_id, [command], owner=owner, timeout=timeout)[0]
