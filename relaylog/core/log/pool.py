"""
Per-key shard pool.

Lazily opens one AppendStream per peer key under a shared directory and keeps
it open until shutdown. The pool is bounded by the number of distinct peers
seen. A shard that cannot be opened or written drops the record and logs the
failure; the global log remains the source of truth.
"""

import os
import threading
from pathlib import Path
from typing import Dict, List

from relaylog.core.log.format import EventRecord
from relaylog.core.log.segment import AppendStream, RotationPolicy
from relaylog.utils.logging import get_logger

logger = get_logger(__name__)


def safe_key(key: str) -> str:
    """Map a peer key to a string usable as part of a single file name."""
    cleaned = key.replace(os.sep, "_")
    if os.altsep:
        cleaned = cleaned.replace(os.altsep, "_")
    if cleaned in ("", ".", ".."):
        cleaned = cleaned.replace(".", "_") or "_"
    return cleaned


def shard_path(directory: Path, prefix: str, key: str, suffix: str) -> Path:
    """
    Resolve the file backing a per-key shard.

    Shared by the writer and the tailer so both agree on naming.
    """
    return Path(directory) / f"{prefix}{safe_key(key)}{suffix}"


class ShardedLogPool:
    """
    Pool of per-key append streams.

    Attributes:
        directory: Directory holding the shard files
        prefix: File name prefix
        suffix: File name suffix
    """

    def __init__(
        self,
        directory: Path,
        prefix: str = "events.",
        suffix: str = ".jsonl",
        rotate_bytes: int = 0,
        archive_timefmt: str = "%Y%m%d-%H%M%S",
        fsync_on_append: bool = True,
    ):
        """
        Initialize the pool. No files are opened until first use.

        Args:
            directory: Directory for shard files
            prefix: File name prefix
            suffix: File name suffix
            rotate_bytes: Per-shard rotation threshold (0 = disabled)
            archive_timefmt: strftime format for archive names
            fsync_on_append: Whether to fsync after each append
        """
        self.directory = Path(directory)
        self.prefix = prefix
        self.suffix = suffix
        self.policy = RotationPolicy(rotate_bytes, archive_timefmt)
        self.fsync_on_append = fsync_on_append

        self._streams: Dict[str, AppendStream] = {}
        self._lock = threading.Lock()

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(
                "Cannot create shard directory",
                directory=str(self.directory),
                error=str(e),
            )

        logger.info(
            "Initialized shard pool",
            directory=str(self.directory),
            prefix=prefix,
            suffix=suffix,
            rotate_bytes=rotate_bytes,
        )

    def shard_path(self, key: str) -> Path:
        return shard_path(self.directory, self.prefix, key, self.suffix)

    def _stream_for(self, key: str) -> AppendStream:
        # keyed by file name so keys that map to one file share one stream
        name = safe_key(key)
        stream = self._streams.get(name)
        if stream is None:
            stream = AppendStream(
                self.shard_path(key),
                policy=self.policy,
                fsync_on_append=self.fsync_on_append,
            )
            self._streams[name] = stream

            logger.debug("Opened shard", key=key, path=str(stream.path))

        return stream

    def append(self, key: str, record: EventRecord) -> bool:
        """
        Append a record to the shard for `key`.

        Args:
            key: Peer key
            record: Record to write

        Returns:
            True if written, False if the record was dropped
        """
        data = record.to_json_line()

        with self._lock:
            try:
                self._stream_for(key).append(data)
            except OSError as e:
                logger.error(
                    "Dropped record for shard",
                    key=key,
                    path=str(self.shard_path(key)),
                    error=str(e),
                )
                return False

        return True

    def open_keys(self) -> List[str]:
        """File-name keys (see safe_key) with an open shard, in first-use order."""
        with self._lock:
            return list(self._streams)

    def close(self) -> None:
        """Close every open shard."""
        with self._lock:
            for key, stream in self._streams.items():
                try:
                    stream.close()
                except OSError as e:
                    logger.error("Failed to close shard", key=key, error=str(e))
            count = len(self._streams)
            self._streams.clear()

        logger.info("Closed shard pool", shards=count)

    def __enter__(self) -> "ShardedLogPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
