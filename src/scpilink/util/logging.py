# -*- coding: utf-8 -*-
"""
Log setup for servers and clients.

Both sides log through loguru. Server and client logs go to separate files under
`~/.scpilink/` by default, and a client that starts a server in-process should not
start the server log (it would remove the client's sinks).
"""

import os
import pathlib
import sys
import traceback

from loguru import logger

from .defaults import DEFAULT_LOGLEVEL, SINGLE_LINE_ERR_LOG, TEMP_DIR, USER_DIR_NAME

_LOG_PATH = ""


def format_error_response():
    err_str = traceback.format_exc()
    if SINGLE_LINE_ERR_LOG:
        return "\t".join(line.strip() for line in err_str.splitlines())
    else:
        return err_str


def _start_log(
    side: str,
    log_to_file: bool,
    log_to_stdout: bool,
    log_path: str,
    clear_prev: bool,
    log_level: str,
):
    global _LOG_PATH

    if clear_prev:
        clear_log(log_path)

    # drop the default stderr sink, and anything a previous start added
    logger.remove()

    if log_to_file:
        pathlib.Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_path, level=log_level, enqueue=True, colorize=False)
        _LOG_PATH = log_path
    if log_to_stdout:
        logger.add(sys.stderr, level=log_level, enqueue=True, colorize=True)
    if log_to_file:
        logger.info("{} log started at {}", side, log_path)
    else:
        logger.info("{} log started.", side)


def start_client_log(
    log_to_file=True,
    log_to_stdout=False,
    log_path=None,
    clear_prev=True,
    log_level=DEFAULT_LOGLEVEL,
):
    if not log_path:
        log_path = log_default_path_client()
    else:
        log_path = os.path.abspath(log_path)
    _start_log("Client", log_to_file, log_to_stdout, log_path, clear_prev, log_level)


def start_server_log(
    log_to_file=True,
    log_to_stdout=False,
    log_path=None,
    clear_prev=True,
    log_level=DEFAULT_LOGLEVEL,
):
    if not log_path:
        log_path = log_default_path_server()
    else:
        log_path = os.path.abspath(log_path)
    _start_log("Server", log_to_file, log_to_stdout, log_path, clear_prev, log_level)


def log_default_path_client() -> str:
    return str(pathlib.Path.home().joinpath(USER_DIR_NAME, "client.log"))


def log_default_path_server() -> str:
    return str(pathlib.Path.home().joinpath(USER_DIR_NAME, "server.log"))


def log_default_dir():
    return TEMP_DIR


def clear_log(log_path: str):
    """
    Delete the log file at the given path, if it exists.

    Arguments
    ---------
    log_path : str
        The path to the log file. Default paths come from log_default_path_client()
        and log_default_path_server().
    """
    if os.path.exists(log_path):
        try:
            os.remove(log_path)
        except PermissionError:
            logger.error(
                "Could not clear log file {}. Permission denied. Continuing.", log_path
            )


def shutdown_client_log():
    global _LOG_PATH
    logger.info("Closing down client log.")
    logger.remove()
    _LOG_PATH = ""


def get_log_filename() -> str:
    """Path of the file sink added by the last start_*_log call ("" if none)."""
    return _LOG_PATH
