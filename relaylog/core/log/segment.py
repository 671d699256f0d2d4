"""
Append-only stream over a single shard file.

A stream owns one file descriptor opened with O_APPEND and applies the
size-threshold archive rotation policy after each append. Streams are not
thread-safe on their own; RotatingLog and ShardedLogPool serialize access.
"""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from relaylog.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RotationPolicy:
    """
    Size-threshold rotation settings.

    Attributes:
        threshold_bytes: Rotate once the live file reaches this size (0 = never)
        archive_timefmt: strftime format appended to archived file names
    """
    threshold_bytes: int = 0
    archive_timefmt: str = "%Y%m%d-%H%M%S"

    def __post_init__(self) -> None:
        if self.threshold_bytes < 0:
            raise ValueError(f"Rotation threshold must be non-negative, got {self.threshold_bytes}")

    @property
    def enabled(self) -> bool:
        return self.threshold_bytes > 0


class AppendStream:
    """
    Manages a single append-only shard file.

    Properties:
    - Each append is one os.write of a whole line on an O_APPEND descriptor
    - Optional fsync after every append
    - Archive-on-threshold rotation by rename; rename failures are logged and
      the stream keeps appending to the current file

    Attributes:
        path: Path of the live file
        policy: Rotation policy
    """

    FILE_MODE = 0o644

    def __init__(
        self,
        path: Path,
        policy: Optional[RotationPolicy] = None,
        fsync_on_append: bool = False,
    ):
        """
        Open (or create) the live file for appending.

        Args:
            path: Live file path
            policy: Rotation policy (default: never rotate)
            fsync_on_append: Whether to fsync after each append

        Raises:
            OSError: If the directory or file cannot be created
        """
        self.path = Path(path)
        self.policy = policy or RotationPolicy()
        self.fsync_on_append = fsync_on_append

        self._fd: Optional[int] = None
        self._current_size = 0
        self.rotations = 0

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._open()

    def _open(self) -> None:
        """Open the live file for appending."""
        if self._fd is not None:
            return

        flags = os.O_WRONLY | os.O_CREAT | os.O_APPEND
        self._fd = os.open(self.path, flags, self.FILE_MODE)
        self._current_size = os.fstat(self._fd).st_size

        if self._current_size > 0:
            logger.debug(
                "Opened existing shard file",
                path=str(self.path),
                size=self._current_size,
            )

    def _close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def append(self, data: bytes) -> int:
        """
        Append one encoded line and apply the rotation policy.

        Args:
            data: Encoded line, including the trailing newline

        Returns:
            Size of the file the line was written to, after the write

        Raises:
            OSError: If the write fails
        """
        if self._fd is None:
            self._open()

        bytes_written = os.write(self._fd, data)
        if bytes_written != len(data):
            raise IOError(
                f"Partial write: expected {len(data)} bytes, wrote {bytes_written} bytes"
            )

        if self.fsync_on_append:
            os.fsync(self._fd)

        # fstat rather than a running count: other descriptors may append too
        size_after = os.fstat(self._fd).st_size
        self._current_size = size_after

        if self.policy.enabled and size_after >= self.policy.threshold_bytes:
            self.rotate()

        return size_after

    def _archive_path(self) -> Path:
        stamp = time.strftime(self.policy.archive_timefmt, time.localtime())
        archive = self.path.with_name(f"{self.path.name}.{stamp}")
        counter = 1
        while archive.exists():
            archive = self.path.with_name(f"{self.path.name}.{stamp}.{counter}")
            counter += 1
        return archive

    def rotate(self) -> Optional[Path]:
        """
        Archive the live file and start a fresh one at the same path.

        Best effort: if the rename fails the error is logged and appends
        continue on the current file.

        Returns:
            Archive path, or None if rotation failed
        """
        archive = self._archive_path()
        self._close()

        try:
            os.rename(self.path, archive)
        except OSError as e:
            logger.error(
                "Rotation failed, continuing on current file",
                path=str(self.path),
                archive=str(archive),
                error=str(e),
            )
            self._open()
            return None

        self._open()
        self.rotations += 1

        logger.info(
            "Rotated shard file",
            path=str(self.path),
            archive=str(archive),
            threshold=self.policy.threshold_bytes,
        )

        return archive

    def flush(self) -> None:
        """Force written data to stable storage."""
        if self._fd is not None:
            os.fsync(self._fd)

    def size(self) -> int:
        """Size of the live file as of the last open or append."""
        return self._current_size

    def close(self) -> None:
        """Flush and close the live file."""
        if self._fd is not None:
            self.flush()
            self._close()
            logger.debug("Closed shard file", path=str(self.path), size=self._current_size)

    def __enter__(self) -> "AppendStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"AppendStream(path={str(self.path)!r}, "
            f"size={self._current_size}, "
            f"threshold={self.policy.threshold_bytes})"
        )
