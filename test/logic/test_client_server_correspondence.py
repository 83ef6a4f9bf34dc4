"""Tests for client-server correspondence validation"""

import scpilink.server  # registers handlers and client functions
from scpilink.types import (
    HANDLER_REGISTRY,
    CONSTS,
    assert_valid_handler_client_correspondence,
)


def test_handler_client_correspondence():
    """Test that all handlers and client methods correspond correctly"""
    assert_valid_handler_client_correspondence()


def test_connection_commands_are_posted():
    """Mutating connection operations go over PUSH/PULL, acquire/release block."""
    posted = {cmd for cmd, info in HANDLER_REGISTRY.items() if info.posted}
    assert posted == {
        CONSTS.CONN.CONNECT,
        CONSTS.CONN.DISCONNECT,
        CONSTS.CONN.DESTROY,
        CONSTS.CONN.SEND,
        CONSTS.CONN.DOWNLOAD,
        CONSTS.CONN.ABORT,
        CONSTS.CONN.DISMISS_ERROR,
    }
    assert not HANDLER_REGISTRY[CONSTS.CONN.ACQUIRE].posted
    assert not HANDLER_REGISTRY[CONSTS.CONN.RELEASE].posted
