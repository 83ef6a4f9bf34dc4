# -*- coding: utf-8 -*-
"""
Utility functions and constants for scpilink.

- Logging configuration and management
- Default ports, timeouts and session timings
- Serial port discovery
- SCPI response classification
- The activity log

Examples
--------
Starting a client log:
```python
from scpilink.util import start_client_log, TEST_LOGLEVEL
start_client_log(log_level=TEST_LOGLEVEL, log_to_stdout=True)
```

See Also
--------
scpilink.util.logging : Logging configuration
scpilink.util.activity_log : Activity log
"""

from .activity_log import ACTIVITY, ActivityLog, ActivityLogEntry
from .check_hw import find_port, get_hw_ports
from .defaults import (
    COMBINE_IF_BELOW,
    DEFAULT_BAUD_RATE,
    DEFAULT_ETHERNET_PORT,
    DEFAULT_HOST_ADDR,
    DEFAULT_LOGLEVEL,
    DEFAULT_PORT,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    HOUSEKEEPING_INTERVAL,
    IDN_EXPECTED_TIMEOUT,
    SINGLE_LINE_ERR_LOG,
    TEST_LOGLEVEL,
    USER_DIR_NAME,
)
from .logging import (
    clear_log,
    format_error_response,
    get_log_filename,
    log_default_dir,
    log_default_path_client,
    log_default_path_server,
    shutdown_client_log,
    start_client_log,
    start_server_log,
)
from .scpi import ScpiValueParser, parse_scpi_value

__all__ = [
    "ACTIVITY",
    "ActivityLog",
    "ActivityLogEntry",
    "COMBINE_IF_BELOW",
    "DEFAULT_BAUD_RATE",
    "DEFAULT_ETHERNET_PORT",
    "DEFAULT_HOST_ADDR",
    "DEFAULT_LOGLEVEL",
    "DEFAULT_PORT",
    "DEFAULT_RETRIES",
    "DEFAULT_TIMEOUT",
    "HOUSEKEEPING_INTERVAL",
    "IDN_EXPECTED_TIMEOUT",
    "SINGLE_LINE_ERR_LOG",
    "TEST_LOGLEVEL",
    "USER_DIR_NAME",
    "clear_log",
    "find_port",
    "format_error_response",
    "get_hw_ports",
    "get_log_filename",
    "log_default_dir",
    "log_default_path_client",
    "log_default_path_server",
    "parse_scpi_value",
    "ScpiValueParser",
    "shutdown_client_log",
    "start_client_log",
    "start_server_log",
]
