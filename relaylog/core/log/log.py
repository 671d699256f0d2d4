"""
Global rotating append log.

A single named, size-bounded record stream. Appends and rotations are
serialized behind one lock so the replication and send threads can share an
instance.
"""

import threading
from pathlib import Path
from typing import Optional

from relaylog.core.log.format import EventRecord
from relaylog.core.log.segment import AppendStream, RotationPolicy
from relaylog.utils.logging import get_logger

logger = get_logger(__name__)


class RotatingLog:
    """
    The global event log.

    Each append writes one JSON line, flushes, then checks the rotation
    threshold. Rotation archives the file as `<path>.<timestamp>`.

    Attributes:
        path: Live file path
    """

    def __init__(
        self,
        path: Path,
        rotate_bytes: int = 0,
        archive_timefmt: str = "%Y%m%d-%H%M%S",
        fsync_on_append: bool = True,
    ):
        """
        Initialize the log.

        Args:
            path: Live file path
            rotate_bytes: Rotation threshold in bytes (0 = disabled)
            archive_timefmt: strftime format for archive names
            fsync_on_append: Whether to fsync after each append
        """
        self.path = Path(path)
        self._lock = threading.Lock()
        self._stream = AppendStream(
            self.path,
            policy=RotationPolicy(rotate_bytes, archive_timefmt),
            fsync_on_append=fsync_on_append,
        )

        logger.info(
            "Initialized global log",
            path=str(self.path),
            rotate_bytes=rotate_bytes,
            size=self._stream.size(),
        )

    def append(self, record: EventRecord) -> int:
        """
        Append a record.

        Args:
            record: Record to write

        Returns:
            Size of the file the record landed in

        Raises:
            OSError: If the write fails
        """
        data = record.to_json_line()

        with self._lock:
            size = self._stream.append(data)

        logger.debug(
            "Appended to global log",
            kind=record.kind.value,
            peer=record.peer,
            size=size,
        )

        return size

    @property
    def rotations(self) -> int:
        """Number of successful rotations since open."""
        return self._stream.rotations

    def size(self) -> int:
        with self._lock:
            return self._stream.size()

    def flush(self) -> None:
        with self._lock:
            self._stream.flush()

    def close(self) -> None:
        with self._lock:
            self._stream.close()

        logger.info("Closed global log", path=str(self.path))

    def __enter__(self) -> "RotatingLog":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
