# -*- coding: utf-8 -*-

import tempfile

DEFAULT_HOST_ADDR = "127.0.0.1"
DEFAULT_PORT = 8850
DEFAULT_RETRIES = 3  # Number of times to retry a failed req operation
DEFAULT_TIMEOUT = 5  # seconds
DEFAULT_LOGLEVEL = "INFO"
TEST_LOGLEVEL = "TRACE"
TEMP_DIR = tempfile.gettempdir()
SINGLE_LINE_ERR_LOG = False  # reformat tracebacks into a single line for err comms

USER_DIR_NAME = ".scpilink"

# session timings, all in seconds
HOUSEKEEPING_INTERVAL = 0.1
IDN_EXPECTED_TIMEOUT = 1.0
COMBINE_IF_BELOW = 0.25  # idle time before a partial line is flushed

DEFAULT_ETHERNET_PORT = 5025  # raw SCPI socket
DEFAULT_BAUD_RATE = 9600
