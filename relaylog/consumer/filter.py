"""
Record filter for tailed shard lines.

A line matches when it decodes to a JSON object and satisfies every filter
that is set: exact kind, `ts >= since_ts`, and a regex search on `text`.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Pattern

from relaylog.core.log.format import EventKind, MalformedRecordError, decode_line


@dataclass
class RecordFilter:
    """
    Conjunction of optional predicates.

    Attributes:
        kind: Required event kind
        since_ts: Minimum `ts` in epoch milliseconds
        pattern: Regex searched in `text`; a leading (?i) makes it
            case-insensitive, as does ignore_case
        ignore_case: Case-insensitive pattern matching
    """
    kind: Optional[EventKind] = None
    since_ts: Optional[int] = None
    pattern: Optional[str] = None
    ignore_case: bool = False
    _regex: Optional[Pattern[str]] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.kind is not None and not isinstance(self.kind, EventKind):
            try:
                self.kind = EventKind(self.kind)
            except ValueError as e:
                raise ValueError(f"invalid kind {self.kind!r} (use received|sent|status)") from e

        if self.pattern is not None:
            flags = re.IGNORECASE if self.ignore_case else 0
            try:
                self._regex = re.compile(self.pattern, flags)
            except re.error as e:
                raise ValueError(f"bad pattern {self.pattern!r}: {e}") from e

    def matches(self, record: Dict[str, Any]) -> bool:
        """Check a decoded record."""
        if self.kind is not None and record.get("kind") != self.kind.value:
            return False

        if self.since_ts is not None:
            ts = record.get("ts")
            if isinstance(ts, bool) or not isinstance(ts, (int, float)) or ts < self.since_ts:
                return False

        if self._regex is not None:
            text = record.get("text")
            if not isinstance(text, str) or not self._regex.search(text):
                return False

        return True

    def matches_line(self, line: bytes | str) -> bool:
        """Check a raw line. Undecodable lines never match."""
        try:
            record = decode_line(line)
        except MalformedRecordError:
            return False
        return self.matches(record)
