"""Protocols for the collaborators a Connection talks to.

A Connection consumes three narrow interfaces:

1. Its transport calls back into a `TransportHost` (the Connection itself).
2. Completed lines are classified by a `ValueParser`.
3. Every request, answer and lifecycle event goes to an `ActivityLogProtocol`.

Anything implementing these methods can be plugged in; the defaults live in
`scpilink.util` (`ScpiValueParser`, `ActivityLog`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from scpilink.util.activity_log import ActivityLogEntry


@runtime_checkable
class TransportHost(Protocol):
    """Events a transport delivers to its host, always on the host's event loop."""

    connected: Callable[[], None]
    """The physical link is up."""

    disconnected: Callable[[], None]
    """The physical link is down (after a disconnect request, a failure or a failed connect)."""

    on_data: Callable[[bytes], None]
    """A chunk of received bytes."""

    set_error: Callable[[str, Optional[str]], None]
    """Report an error code (see CONN_ERROR) and message."""


@runtime_checkable
class ValueParser(Protocol):
    parse: Callable[[str], Any]
    """Classify a response line as str | int | float | list | dict."""


@runtime_checkable
class ActivityLogProtocol(Protocol):
    record: Callable[[ActivityLogEntry], str]
    """Store an entry, returning its id. Must not block."""
