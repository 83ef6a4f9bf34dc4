import asyncio

import pytest

from scpilink.connection import Framer

COMBINE = 0.1


@pytest.fixture
def lines():
    return []


@pytest.mark.asyncio
async def test_single_line(lines):
    framer = Framer(lines.append, COMBINE)
    framer.feed(b"OK\n")
    assert lines == [b"OK\n"]
    assert framer.is_empty


@pytest.mark.asyncio
async def test_lines_in_arrival_order(lines):
    framer = Framer(lines.append, COMBINE)
    for chunk in [b"1.0\n2.", b"0\n3.0", b"\n", b"4.0\n5.0\n"]:
        framer.feed(chunk)
    assert lines == [b"1.0\n", b"2.0\n", b"3.0\n", b"4.0\n", b"5.0\n"]
    assert framer.is_empty


@pytest.mark.asyncio
async def test_byte_by_byte(lines):
    framer = Framer(lines.append, COMBINE)
    stream = b"*IDN?\nSCPILINK,MOCK\n"
    for i in range(len(stream)):
        framer.feed(stream[i : i + 1])
    assert lines == [b"*IDN?\n", b"SCPILINK,MOCK\n"]


@pytest.mark.asyncio
async def test_partial_line_waits(lines):
    framer = Framer(lines.append, COMBINE)
    framer.feed(b"1.23")
    assert lines == []
    assert framer.buffered == b"1.23"


@pytest.mark.asyncio
async def test_partial_line_flushed_after_idle(lines):
    framer = Framer(lines.append, COMBINE)
    framer.feed(b"A\nunterminated")
    assert lines == [b"A\n"]
    await asyncio.sleep(COMBINE * 3)
    assert lines == [b"A\n", b"unterminated"]
    assert framer.is_empty


@pytest.mark.asyncio
async def test_one_flush_per_idle_period(lines):
    framer = Framer(lines.append, COMBINE)
    framer.feed(b"abc")
    await asyncio.sleep(COMBINE * 3)
    await asyncio.sleep(COMBINE * 3)
    assert lines == [b"abc"]

    framer.feed(b"def")
    await asyncio.sleep(COMBINE * 3)
    assert lines == [b"abc", b"def"]


@pytest.mark.asyncio
async def test_new_chunk_restarts_idle_period(lines):
    framer = Framer(lines.append, COMBINE)
    framer.feed(b"12")
    await asyncio.sleep(COMBINE / 4)
    framer.feed(b"34")
    await asyncio.sleep(COMBINE / 4)
    framer.feed(b"5\n")
    await asyncio.sleep(COMBINE * 3)
    assert lines == [b"12345\n"]


@pytest.mark.asyncio
async def test_reset_discards_and_cancels(lines):
    framer = Framer(lines.append, COMBINE)
    framer.feed(b"stale")
    assert framer.reset() == b"stale"
    await asyncio.sleep(COMBINE * 3)
    assert lines == []
    assert framer.is_empty


@pytest.mark.asyncio
async def test_handler_may_feed_again(lines):
    framer = None

    def on_line(line):
        lines.append(line)
        if line == b"first\n":
            framer.feed(b"second\n")

    framer = Framer(on_line, COMBINE)
    framer.feed(b"first\n")
    assert lines == [b"first\n", b"second\n"]
