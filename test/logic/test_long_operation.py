import asyncio

import pytest

from scpilink.connection import (
    LONG_OP,
    LONG_OP_STATE,
    FileDownload,
    FileUpload,
    encode_block,
)
from scpilink.types import DownloadInstructions, LongOperationError

PAYLOAD = b"0123456789ABCDEF"  # 16 bytes
STREAM = b"#216" + PAYLOAD + b"OK\n"


class FakeConnection:
    """Just what a long operation uses of its connection."""

    def __init__(self):
        self.loop = asyncio.get_running_loop()
        self.sent = []
        self.raw = bytearray()
        self.is_connected = True
        self.accept = True

    def send(self, command, log=True, long_operation=False):
        assert long_operation
        self.sent.append(command)
        return self.accept

    def write_raw(self, data):
        self.raw.extend(data)


def feed_split(stream: bytes, cuts: list[int]) -> FileUpload:
    bounds = [0, *cuts, len(stream)]
    chunks = [stream[a:b] for a, b in zip(bounds, bounds[1:])]
    upload = FileUpload(None, chunks[0])
    for chunk in chunks[1:]:
        upload.on_data(chunk)
    return upload


class TestEncodeBlock:
    def test_header(self):
        assert encode_block(b"Hello!") == b"#16Hello!"
        assert encode_block(PAYLOAD) == b"#216" + PAYLOAD

    def test_empty(self):
        assert encode_block(b"") == b"#10"


class TestFileUpload:
    def test_spec_example_header(self):
        upload = FileUpload(None, b"#216Hello!")
        assert upload.kind == LONG_OP.UPLOAD
        assert upload.expected_length == 16
        assert upload.transferred == 6
        assert not upload.is_done()

    @pytest.mark.parametrize(
        "cuts",
        [
            [],  # single chunk
            [1],  # after the marker
            [3],  # inside the length digits
            [2, 3, 4],  # header byte by byte
            [10],  # inside the payload
            [19],  # just before the last payload byte
            [20],  # exactly at the end of the payload
            [3, 10, 19, 21],  # everywhere at once
        ],
    )
    def test_split_points(self, cuts):
        upload = feed_split(STREAM, cuts)
        assert upload.is_done()
        assert upload.state == LONG_OP_STATE.DONE
        assert upload.result == PAYLOAD
        assert upload.transferred == 16
        assert upload.data_surplus == b"OK\n"

    def test_no_surplus(self):
        upload = FileUpload(None, b"#15ABCDE")
        assert upload.is_done()
        assert upload.result == b"ABCDE"
        assert upload.data_surplus is None

    def test_binary_payload_with_terminators(self):
        payload = b"\n\x00\xff#1\n"
        upload = FileUpload(None, encode_block(payload))
        assert upload.result == payload

    def test_data_after_done_is_surplus(self):
        upload = FileUpload(None, b"#13abcX")
        upload.on_data(b"YZ\n")
        assert upload.data_surplus == b"XYZ\n"

    def test_indefinite_block(self):
        upload = FileUpload(None, b"#0some ")
        assert not upload.is_done()
        upload.on_data(b"bytes\nnext\n")
        assert upload.is_done()
        assert upload.result == b"some bytes"
        assert upload.data_surplus == b"next\n"

    def test_malformed_width(self):
        upload = FileUpload(None, b"#Xnot a block\n")
        assert upload.state == LONG_OP_STATE.ERROR
        assert upload.failed
        assert upload.is_done()
        # the raw bytes go back to the line protocol
        assert upload.data_surplus == b"#Xnot a block\n"

    def test_malformed_length(self):
        upload = FileUpload(None, b"#31a")
        upload.on_data(b"2xyz")
        assert upload.failed
        assert upload.error == "Malformed block length."
        assert upload.data_surplus == b"#31a2xyz"

    def test_abort(self):
        upload = FileUpload(None, b"#15AB")
        upload.abort()
        assert upload.state == LONG_OP_STATE.ABORTED
        assert upload.is_done()
        assert not upload.failed

    def test_log_entry(self):
        upload = FileUpload(None, b"#15ABCDE")
        entry = upload.log_entry
        assert entry["direction"] == "upload"
        assert entry["state"] == "done"
        assert entry["dataLength"] == 5
        assert entry["expectedLength"] == 5


class TestFileDownload:
    @pytest.mark.asyncio
    async def test_chunks_and_commands(self):
        conn = FakeConnection()
        instructions = DownloadInstructions(
            data=b"ABCDEFGHIJ",
            destination_file_path="wave.bin",
            start_command_template='MMEM:DOWN:FNAM "<path>",<size>',
            finish_command_template="MMEM:DOWN:DONE",
            chunk_size=4,
        )
        download = FileDownload(conn, instructions)
        assert download.kind == LONG_OP.DOWNLOAD
        assert download.expected_length == 10
        download.start()
        assert not download.is_done()
        await asyncio.sleep(0.05)

        assert download.is_done()
        assert download.state == LONG_OP_STATE.DONE
        assert download.transferred == 10
        assert conn.sent == ['MMEM:DOWN:FNAM "wave.bin",10', "MMEM:DOWN:DONE"]
        assert bytes(conn.raw) == (
            b"MMEM:DOWN:DATA #14ABCD\n"
            b"MMEM:DOWN:DATA #14EFGH\n"
            b"MMEM:DOWN:DATA #12IJ\n"
        )

    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path):
        source = tmp_path / "data.bin"
        source.write_bytes(b"\x01\x02\x03")
        conn = FakeConnection()
        download = FileDownload(
            conn,
            DownloadInstructions(source_file_path=str(source), start_command_template=None),
        )
        download.start()
        await asyncio.sleep(0.05)
        assert download.state == LONG_OP_STATE.DONE
        assert bytes(conn.raw) == b"MMEM:DOWN:DATA #13\x01\x02\x03\n"
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_missing_data(self, tmp_path):
        conn = FakeConnection()
        with pytest.raises(LongOperationError):
            FileDownload(conn, DownloadInstructions())
        with pytest.raises(LongOperationError):
            FileDownload(
                conn, DownloadInstructions(source_file_path=str(tmp_path / "missing.bin"))
            )

    @pytest.mark.asyncio
    async def test_rejected_start_command_fails(self):
        conn = FakeConnection()
        conn.accept = False
        download = FileDownload(conn, DownloadInstructions(data=b"abc"))
        download.start()
        await asyncio.sleep(0.05)
        assert download.is_done()
        assert download.failed
        assert download.error == "could not send command"
        assert conn.raw == bytearray()

    @pytest.mark.asyncio
    async def test_abort_sends_abort_command(self):
        conn = FakeConnection()
        download = FileDownload(
            conn,
            DownloadInstructions(
                data=b"x" * 100,
                chunk_size=10,
                chunk_interval=0.05,
                abort_command_template="MMEM:DOWN:ABOR",
            ),
        )
        download.start()
        await asyncio.sleep(0.01)
        download.abort()
        await asyncio.sleep(0.01)
        assert download.is_done()
        assert download.state == LONG_OP_STATE.ABORTED
        assert download.transferred < 100
        assert conn.sent[-1] == "MMEM:DOWN:ABOR"

    @pytest.mark.asyncio
    async def test_instrument_chatter_is_surplus(self):
        conn = FakeConnection()
        download = FileDownload(conn, DownloadInstructions(data=b"abc"))
        download.on_data(b"1\n")
        download.on_data(b"2\n")
        assert download.data_surplus == b"1\n2\n"
