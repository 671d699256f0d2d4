"""Tests for the global rotating log."""

import json
import threading

from relaylog.core.log.format import EventRecord
from relaylog.core.log.log import RotatingLog


def read_records(paths):
    records = []
    for path in paths:
        for line in path.read_bytes().splitlines():
            records.append(json.loads(line))
    return records


class TestRotatingLog:
    """Test RotatingLog."""

    def test_append_writes_json_lines(self, tmp_path):
        """Test each append is one decodable line."""
        path = tmp_path / "events.jsonl"

        with RotatingLog(path, fsync_on_append=False) as log:
            log.append(EventRecord.received("max", "hello", ts=1))
            log.append(EventRecord.status_update("max", "read", ts=2))

        assert read_records([path]) == [
            {"ts": 1, "kind": "received", "peer": "max", "text": "hello"},
            {"ts": 2, "kind": "status", "peer": "max", "status": "read"},
        ]

    def test_rotation_splits_records(self, tmp_path):
        """Test archived and live files partition the records."""
        path = tmp_path / "events.jsonl"
        record = EventRecord.sent("max", "x" * 40, ts=1)
        line_size = len(record.to_json_line())

        with RotatingLog(path, rotate_bytes=line_size * 3, fsync_on_append=False) as log:
            for _ in range(4):
                log.append(record)
            assert log.rotations == 1

        archives = [p for p in tmp_path.iterdir() if p.name.startswith("events.jsonl.")]
        assert len(archives) == 1
        assert len(read_records(archives)) == 3
        assert len(read_records([path])) == 1

    def test_concurrent_appends_are_whole_lines(self, tmp_path):
        """Test appends from several threads never interleave or get lost."""
        path = tmp_path / "events.jsonl"
        log = RotatingLog(path, rotate_bytes=2048, archive_timefmt="r", fsync_on_append=False)

        def writer(thread_id, count):
            for i in range(count):
                log.append(EventRecord.received(f"peer-{thread_id}", f"msg-{i}", ts=i))

        threads = [threading.Thread(target=writer, args=(i, 20)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        log.close()

        files = sorted(tmp_path.iterdir())
        records = read_records(files)

        assert len(records) == 100
        assert log.rotations >= 1
        for thread_id in range(5):
            texts = [r["text"] for r in records if r["peer"] == f"peer-{thread_id}"]
            assert sorted(texts) == sorted(f"msg-{i}" for i in range(20))
