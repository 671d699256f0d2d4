"""Consumer side: cursor persistence, record filtering and tailing."""

from relaylog.consumer.cursor import Cursor, CursorStore
from relaylog.consumer.filter import RecordFilter
from relaylog.consumer.tailer import TailMode, TailResult, TailStatus, Tailer

__all__ = [
    "Cursor",
    "CursorStore",
    "RecordFilter",
    "TailMode",
    "TailResult",
    "TailStatus",
    "Tailer",
]
