"""
Core log storage implementation.

This package provides append-only JSON-line shards with:
- A tagged event record format
- Size-threshold archive rotation
- A global log and a lazily opened per-key pool
- Incremental complete-line reads
"""

from relaylog.core.log.format import EventKind, EventRecord, MalformedRecordError
from relaylog.core.log.log import RotatingLog
from relaylog.core.log.pool import ShardedLogPool, shard_path
from relaylog.core.log.reader import PathChange, ShardReader
from relaylog.core.log.segment import AppendStream, RotationPolicy

__all__ = [
    "AppendStream",
    "EventKind",
    "EventRecord",
    "MalformedRecordError",
    "PathChange",
    "RotatingLog",
    "RotationPolicy",
    "ShardReader",
    "ShardedLogPool",
    "shard_path",
]
