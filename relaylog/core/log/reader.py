"""
Incremental reader for shard files.

Reads complete newline-terminated lines from a remembered byte offset and
reports when the path no longer refers to the file being read (rotation) or
the file shrank below the offset (truncation).
"""

import os
from enum import Enum
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple

from relaylog.utils.logging import get_logger

logger = get_logger(__name__)

FileIdentity = Tuple[int, int]

READ_CHUNK_SIZE = 64 * 1024


class PathChange(str, Enum):
    """What a re-stat of the shard path found."""

    UNCHANGED = "unchanged"
    MISSING = "missing"
    ROTATED = "rotated"
    TRUNCATED = "truncated"


def identity_of(st: os.stat_result) -> FileIdentity:
    """Device and inode pair identifying a file."""
    return (st.st_dev, st.st_ino)


def split_complete_lines(data: bytes) -> Tuple[List[bytes], int]:
    """
    Split a buffer into complete lines.

    Returns:
        Tuple of (lines without their newline, bytes consumed). Bytes after
        the last newline are not consumed.
    """
    end = data.rfind(b"\n")
    if end < 0:
        return [], 0
    return data[:end].split(b"\n"), end + 1


class ShardReader:
    """
    Sequential line reader over one shard path.

    The reader keeps its file handle open between polls, so after the path
    is renamed away the handle still reads the archived file.

    Attributes:
        path: Shard path being followed
        offset: Byte offset of the next unread line in the open file
        identity: Identity of the open file
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.offset = 0
        self.identity: Optional[FileIdentity] = None
        self._file: Optional[BinaryIO] = None

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self, at_end: bool = False) -> bool:
        """
        Open the file currently at the path.

        Args:
            at_end: Start at end of file instead of byte 0

        Returns:
            False if the path does not exist
        """
        self.close()
        try:
            self._file = open(self.path, "rb")
        except FileNotFoundError:
            return False

        st = os.fstat(self._file.fileno())
        self.identity = identity_of(st)
        self.offset = st.st_size if at_end else 0

        logger.debug(
            "Opened shard for reading",
            path=str(self.path),
            offset=self.offset,
        )
        return True

    def check_path(self) -> PathChange:
        """
        Re-stat the path and compare with the open file.

        A different identity means the path was rotated; a size below the
        current offset means the file was truncated in place. A file that
        was replaced by another of equal or greater size while keeping the
        same identity cannot be told apart from normal growth.
        """
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return PathChange.MISSING

        if identity_of(st) != self.identity:
            return PathChange.ROTATED
        if st.st_size < self.offset:
            return PathChange.TRUNCATED
        return PathChange.UNCHANGED

    def rewind(self) -> None:
        """Restart from byte 0 of the open file (after truncation)."""
        self.offset = 0

    def read_lines(
        self,
        include_partial: bool = False,
        max_bytes: int = READ_CHUNK_SIZE,
    ) -> List[bytes]:
        """
        Read the next batch of complete lines.

        At most about `max_bytes` are read per call; callers loop until an
        empty result to reach the end of the file. A single line longer than
        `max_bytes` is still returned whole.

        Args:
            include_partial: Also return a trailing line with no newline
                once the end of file is reached (used when draining an
                archived file that will not grow)
            max_bytes: Read size per call

        Returns:
            New lines, without newlines
        """
        if self._file is None:
            return []

        self._file.seek(self.offset)
        chunk = self._file.read(max_bytes)
        if not chunk:
            return []

        data = chunk
        at_eof = len(chunk) < max_bytes
        while not at_eof and b"\n" not in chunk:
            chunk = self._file.read(max_bytes)
            data += chunk
            at_eof = len(chunk) < max_bytes

        lines, consumed = split_complete_lines(data)
        if include_partial and at_eof and consumed < len(data):
            lines.append(data[consumed:])
            consumed = len(data)

        self.offset += consumed
        return lines

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "ShardReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
