"""
Replication cursor persistence.

The cursor records how much upstream history has been durably written to the
logs. It is replaced atomically (write temp file, fsync, rename) so readers in
other processes never see a partial file.
"""

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from relaylog.core.log.format import now_ms
from relaylog.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Cursor:
    """
    Persisted replication position.

    Attributes:
        since: Upstream position to resume from
        updated: Wall-clock ms of the last save
    """
    since: int
    updated: int = 0


class CursorStore:
    """
    File-backed cursor store.

    load() treats a missing, malformed or wrongly shaped file as "no cursor",
    which callers interpret as "replay from the beginning".
    """

    def __init__(self, path: Path):
        """
        Initialize the store.

        Args:
            path: Cursor file path
        """
        self.path = Path(path)

    @property
    def tmp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")

    def load_cursor(self) -> Optional[Cursor]:
        """
        Read the full cursor.

        Returns:
            Cursor, or None if there is no usable cursor
        """
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cursor", path=str(self.path), error=str(e))
            return None

        if not isinstance(data, dict):
            logger.warning("Ignoring cursor with wrong shape", path=str(self.path))
            return None

        since = data.get("since")
        if isinstance(since, bool) or not isinstance(since, int) or since < 0:
            logger.warning("Ignoring cursor with invalid since", path=str(self.path), since=since)
            return None

        updated = data.get("updated")
        if isinstance(updated, bool) or not isinstance(updated, int):
            updated = 0

        return Cursor(since=since, updated=updated)

    def load(self) -> Optional[int]:
        """
        Read the persisted position.

        Returns:
            The `since` value, or None to request a full replay
        """
        cursor = self.load_cursor()
        if cursor is None:
            return None

        logger.info("Loaded cursor", path=str(self.path), since=cursor.since)
        return cursor.since

    def save(self, since: int) -> Cursor:
        """
        Persist a new position atomically.

        Args:
            since: Position to persist

        Returns:
            The cursor written

        Raises:
            OSError: If the file cannot be written or renamed
        """
        cursor = Cursor(since=since, updated=now_ms())
        tmp_path = self.tmp_path

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(asdict(cursor), f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Failed to save cursor", path=str(self.path), since=since, error=str(e))
            raise

        logger.debug("Saved cursor", since=since)
        return cursor
