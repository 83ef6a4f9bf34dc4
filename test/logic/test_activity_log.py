import simplejson as json

from scpilink.util.activity_log import (
    ACTIVITY,
    ActivityLog,
    ActivityLogEntry,
    dumps_message,
)


def entry(oid, kind, message="", data=None):
    return ActivityLogEntry(oid=oid, type=ACTIVITY[kind], message=message, data=data)


def test_record_assigns_increasing_ids():
    log = ActivityLog()
    first = log.record(entry("dmm", "REQUEST", "*IDN?"))
    second = log.record(entry("dmm", "ANSWER", "ACME,1,2,3\n"))
    assert (first, second) == ("1", "2")
    assert len(log) == 2
    assert log.last().id == "2"


def test_filters():
    log = ActivityLog()
    log.record(entry("dmm", "CONNECTED"))
    log.record(entry("psu", "CONNECTED"))
    log.record(entry("dmm", "REQUEST", "MEAS:VOLT?"))

    assert [e.type for e in log.entries("dmm")] == [
        ACTIVITY["CONNECTED"],
        ACTIVITY["REQUEST"],
    ]
    assert [e.oid for e in log.entries(type=ACTIVITY["CONNECTED"])] == ["dmm", "psu"]
    assert log.last("psu").type == ACTIVITY["CONNECTED"]
    assert log.last("nobody") is None


def test_max_entries():
    log = ActivityLog(max_entries=2)
    for i in range(5):
        log.record(entry("dmm", "REQUEST", str(i)))
    assert [e.message for e in log.entries()] == ["3", "4"]


def test_clear():
    log = ActivityLog()
    log.record(entry("dmm", "REQUEST"))
    log.clear()
    assert len(log) == 0
    assert log.last() is None
    # ids keep counting
    assert log.record(entry("dmm", "REQUEST")) == "2"


def test_json_lines_file(tmp_path):
    path = tmp_path / "logs" / "activity.jsonl"
    log = ActivityLog(str(path))
    log.record(entry("dmm", "REQUEST", "*IDN?"))
    log.record(entry("dmm", "FILE", dumps_message(direction="upload"), data=b"abc"))

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [line["id"] for line in lines] == ["1", "2"]
    assert lines[0]["message"] == "*IDN?"
    assert lines[0]["dataLength"] is None
    assert lines[1]["dataLength"] == 3
    assert json.loads(lines[1]["message"]) == {"direction": "upload"}


def test_unwritable_file_keeps_entry(tmp_path):
    log = ActivityLog(str(tmp_path / "activity.jsonl"))
    log.path = tmp_path  # a directory cannot be opened for appending
    assert log.record(entry("dmm", "REQUEST")) == "1"
    assert len(log) == 1


def test_entry_msgpack_round_trip():
    original = entry("dmm", "ANSWER", "1.0\n", data=b"\x00\x01")
    original.id = "7"
    assert ActivityLogEntry.from_msgpack(original.to_msgpack()) == original
