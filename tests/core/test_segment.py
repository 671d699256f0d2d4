"""Tests for the append stream and its rotation policy."""

import os
import time

import pytest

from relaylog.core.log import segment as segment_module
from relaylog.core.log.segment import AppendStream, RotationPolicy

LINE = b'{"n":"0000000000"}\n'


def archives_of(path):
    return sorted(p for p in path.parent.iterdir() if p.name.startswith(path.name + "."))


class TestAppendStream:
    """Test AppendStream appends and rotation."""

    def test_append_creates_file(self, tmp_path):
        """Test first append creates parent dirs and file."""
        path = tmp_path / "nested" / "events.jsonl"

        with AppendStream(path) as stream:
            size = stream.append(LINE)

        assert size == len(LINE)
        assert path.read_bytes() == LINE

    def test_reopen_appends(self, tmp_path):
        """Test reopening keeps existing content."""
        path = tmp_path / "events.jsonl"

        with AppendStream(path) as stream:
            stream.append(LINE)

        with AppendStream(path) as stream:
            assert stream.size() == len(LINE)
            stream.append(LINE)

        assert path.read_bytes() == LINE * 2

    def test_rotation_exactly_once_at_threshold(self, tmp_path):
        """Test crossing the threshold rotates once with verbatim archive."""
        path = tmp_path / "events.jsonl"
        threshold = len(LINE) * 4 + 1

        stream = AppendStream(path, RotationPolicy(threshold_bytes=threshold))

        lines = [b'{"n":"%010d"}\n' % i for i in range(5)]
        for line in lines:
            stream.append(line)

        archives = archives_of(path)
        assert len(archives) == 1
        assert stream.rotations == 1
        assert archives[0].read_bytes() == b"".join(lines)
        assert path.read_bytes() == b""

        after = b'{"n":"after00000"}\n'
        stream.append(after)
        stream.close()

        assert path.read_bytes() == after
        assert len(archives_of(path)) == 1

    def test_exact_threshold_triggers_rotation(self, tmp_path):
        """Test size equal to the threshold counts as reached."""
        path = tmp_path / "events.jsonl"

        with AppendStream(path, RotationPolicy(threshold_bytes=len(LINE) * 2)) as stream:
            stream.append(LINE)
            assert stream.rotations == 0
            stream.append(LINE)
            assert stream.rotations == 1

    def test_zero_threshold_never_rotates(self, tmp_path):
        """Test threshold 0 disables rotation."""
        path = tmp_path / "events.jsonl"

        with AppendStream(path, RotationPolicy(threshold_bytes=0)) as stream:
            for _ in range(100):
                stream.append(LINE)

        assert archives_of(path) == []
        assert path.stat().st_size == len(LINE) * 100

    def test_archive_name_uses_time_format(self, tmp_path):
        """Test archive suffix follows the configured strftime format."""
        path = tmp_path / "events.jsonl"

        with AppendStream(path, RotationPolicy(len(LINE), "%Y")) as stream:
            stream.append(LINE)

        assert archives_of(path) == [tmp_path / f"events.jsonl.{time.strftime('%Y')}"]

    def test_archive_collision_gets_counter(self, tmp_path):
        """Test two rotations with the same stamp never overwrite."""
        path = tmp_path / "events.jsonl"

        with AppendStream(path, RotationPolicy(len(LINE), "fixed")) as stream:
            stream.append(b'{"n":"first00000"}\n')
            stream.append(b'{"n":"second0000"}\n')
            stream.append(b'{"n":"third00000"}\n')

        assert (tmp_path / "events.jsonl.fixed").read_bytes() == b'{"n":"first00000"}\n'
        assert (tmp_path / "events.jsonl.fixed.1").read_bytes() == b'{"n":"second0000"}\n'
        assert (tmp_path / "events.jsonl.fixed.2").read_bytes() == b'{"n":"third00000"}\n'

    def test_rotation_failure_keeps_appending(self, tmp_path, monkeypatch):
        """Test failed rename is absorbed and writes continue."""
        path = tmp_path / "events.jsonl"

        def failing_rename(src, dst):
            raise OSError(18, "Invalid cross-device link")

        monkeypatch.setattr(segment_module.os, "rename", failing_rename)

        with AppendStream(path, RotationPolicy(threshold_bytes=len(LINE))) as stream:
            stream.append(LINE)
            stream.append(LINE)
            assert stream.rotations == 0

        assert path.read_bytes() == LINE * 2
        assert archives_of(path) == []

    def test_negative_threshold_rejected(self):
        """Test policy validation."""
        with pytest.raises(ValueError):
            RotationPolicy(threshold_bytes=-1)

    def test_fsync_on_append(self, tmp_path, monkeypatch):
        """Test fsync is called per append when enabled."""
        calls = []
        real_fsync = os.fsync
        monkeypatch.setattr(segment_module.os, "fsync", lambda fd: (calls.append(fd), real_fsync(fd)))

        stream = AppendStream(tmp_path / "events.jsonl", fsync_on_append=True)
        stream.append(LINE)
        stream.append(LINE)

        assert len(calls) == 2

        stream.close()
