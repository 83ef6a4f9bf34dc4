"""
Command-line interface for scpilink.

This module provides command-line tools for:

- Running the session server
- Managing server instances
- Listing serial ports and configured instruments
- Quick queries to an instrument through a server

The CLI is built using the Click framework.

Examples
--------
Serving the configured instruments:
```bash
$ scpilink server --no-log-to-stdout
```

Asking the mock instrument for a voltage:
```bash
$ scpilink query mock "MEAS:VOLT?"
MEAS:VOLT? -> 1.2345
```

See Also
--------
scpilink.server : Server-client communication
scpilink.scripting : The helpers behind `scpilink query`


CLI Tree
--------

```
$ scpilink --tree
cli
└── instruments
    └── init
    └── list
└── kill
└── list
└── ports
└── query
└── server
```
"""

from .base import cli, tree_option

__all__ = ["cli", "tree_option"]
