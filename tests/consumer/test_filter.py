"""Tests for the record filter."""

import pytest

from relaylog.consumer.filter import RecordFilter
from relaylog.core.log.format import EventKind

HELLO = b'{"ts":100,"kind":"received","peer":"max","text":"Hello World"}'


class TestRecordFilter:
    """Test RecordFilter predicates."""

    def test_empty_filter_matches_everything(self):
        assert RecordFilter().matches_line(HELLO)

    def test_kind_and_inline_case_flag(self):
        """Test kind plus a (?i) pattern."""
        assert RecordFilter(kind="received", pattern="(?i)hello").matches_line(HELLO)
        assert not RecordFilter(kind="sent", pattern="(?i)hello").matches_line(HELLO)

    def test_ignore_case_option(self):
        assert not RecordFilter(pattern="hello").matches_line(HELLO)
        assert RecordFilter(pattern="hello", ignore_case=True).matches_line(HELLO)

    def test_pattern_is_a_search(self):
        assert RecordFilter(pattern="o W").matches_line(HELLO)

    def test_since_ts(self):
        """Test ts is compared inclusively."""
        assert RecordFilter(since_ts=100).matches_line(HELLO)
        assert not RecordFilter(since_ts=101).matches_line(HELLO)

    def test_pattern_requires_text(self):
        """Test status records never match a pattern."""
        status = b'{"ts":1,"kind":"status","peer":"max","status":"read"}'

        assert RecordFilter(kind=EventKind.STATUS).matches_line(status)
        assert not RecordFilter(pattern="read").matches_line(status)

    @pytest.mark.parametrize("line", [
        b"",
        b"garbage",
        b'{"ts":1,"kind":"received"',
        b"[1,2,3]",
    ])
    def test_malformed_lines_never_match(self, line):
        assert not RecordFilter().matches_line(line)

    def test_invalid_kind_rejected(self):
        with pytest.raises(ValueError):
            RecordFilter(kind="deleted")

    def test_invalid_pattern_rejected(self):
        with pytest.raises(ValueError):
            RecordFilter(pattern="(unclosed")
