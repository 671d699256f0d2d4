"""
Tailing engine for shard files.

A Tailer follows one shard path independently of the writer process. It
waits for the file to appear, reads newly completed lines from a remembered
offset, filters them and emits matches in one of three delivery modes:

- follow: stream matches until the stop event is set
- once: stop at the first match, or report a timeout when the deadline passes
- window: collect matches until the deadline, then stop

Rotation is detected by re-stating the path on every poll: a different file
identity means the path was rotated, a size below the offset means it was
truncated. Before switching to a rotated-in file the tailer drains what is
left in the file it already has open, which by then is the archive.

Every wait is a bounded sleep, so cancellation and deadlines are checked at
least once per poll interval.
"""

import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, TextIO

from relaylog.consumer.filter import RecordFilter
from relaylog.core.aliases import AliasBook
from relaylog.core.log.format import MalformedRecordError, decode_line
from relaylog.core.log.pool import shard_path
from relaylog.core.log.reader import PathChange, ShardReader
from relaylog.utils.config import HubSettings
from relaylog.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 0.2


class TailMode(str, Enum):
    """Delivery modes."""

    FOLLOW = "follow"
    ONCE = "once"
    WINDOW = "window"


class TailState(str, Enum):
    """Tailer lifecycle states."""

    WAITING_FOR_FILE = "waiting_for_file"
    STREAMING = "streaming"
    EOF_IDLE = "eof_idle"
    TERMINATED = "terminated"


class TailStatus(str, Enum):
    """How a tail run ended."""

    MATCHED = "matched"      # once: first match delivered
    TIMEOUT = "timeout"      # once: deadline passed without a match
    COMPLETED = "completed"  # window: deadline passed
    STOPPED = "stopped"      # stop event set


class TargetMissingError(Exception):
    """Raised when the target file does not exist and waiting is disabled."""
    pass


@dataclass
class TailResult:
    """
    Outcome of a tail run.

    Attributes:
        status: How the run ended
        matches: Number of records emitted
    """
    status: TailStatus
    matches: int

    @property
    def ok(self) -> bool:
        return self.status is not TailStatus.TIMEOUT


def resolve_target(settings: HubSettings, peer: str, aliases: Optional[AliasBook] = None) -> Path:
    """
    Resolve a peer (alias or raw identifier) to its shard file.

    A raw identifier that has an alias maps to the alias's shard, matching
    how the writer keys shards.
    """
    if aliases is None:
        aliases = AliasBook.load(settings.aliases_path)
    key = aliases.peer_key(peer)
    return shard_path(settings.per_dir, settings.per_prefix, key, settings.per_suffix)


class LineSink:
    """Write each match as its own line."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def __call__(self, line: bytes) -> None:
        self.stream.write(line.decode("utf-8", errors="replace") + "\n")
        self.stream.flush()

    def close(self) -> None:
        pass


class ArraySink:
    """Buffer matches and write them as one JSON array on close."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.lines: List[str] = []

    def __call__(self, line: bytes) -> None:
        self.lines.append(line.decode("utf-8", errors="replace"))

    def close(self) -> None:
        self.stream.write("[" + ",".join(self.lines) + "]\n")
        self.stream.flush()


class Tailer:
    """
    Follows one shard file and emits matching lines.

    Attributes:
        path: File being tailed
        mode: Delivery mode
        state: Current lifecycle state
    """

    def __init__(
        self,
        path: Path,
        emit: Callable[[bytes], None],
        mode: TailMode = TailMode.FOLLOW,
        record_filter: Optional[RecordFilter] = None,
        duration: Optional[float] = None,
        wait_for_file: bool = True,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize a tailer.

        Args:
            path: Shard file to follow
            emit: Called with each matching line (without newline)
            mode: Delivery mode
            record_filter: Filter applied to each record (default: match all)
            duration: Timeout for once, window length for window (seconds)
            wait_for_file: Poll for a missing file instead of failing
            poll_interval: Sleep between polls in seconds
            stop_event: Cancels the run when set
            clock: Monotonic clock used for deadlines
            sleep: Sleep function

        Raises:
            ValueError: If a timed mode has no positive duration
        """
        if mode in (TailMode.ONCE, TailMode.WINDOW) and (duration is None or duration <= 0):
            raise ValueError(f"{mode.value} mode requires a positive duration")

        self.path = Path(path)
        self.emit = emit
        self.mode = mode
        self.filter = record_filter or RecordFilter()
        self.duration = duration
        self.wait_for_file = wait_for_file
        self.poll_interval = poll_interval
        self.stop_event = stop_event or threading.Event()
        self._clock = clock
        self._sleep = sleep

        self.state = TailState.WAITING_FOR_FILE
        self.matches = 0
        self.skipped = 0
        self._deadline: Optional[float] = None
        self._reader = ShardReader(self.path)

    def _finished(self) -> Optional[TailStatus]:
        """Check cancellation and the deadline."""
        if self.stop_event.is_set():
            return TailStatus.STOPPED
        if self._deadline is not None and self._clock() >= self._deadline:
            return TailStatus.TIMEOUT if self.mode is TailMode.ONCE else TailStatus.COMPLETED
        return None

    def _deliver(self, lines: List[bytes]) -> bool:
        """
        Filter and emit lines.

        Returns:
            True if a once-mode run is satisfied
        """
        for line in lines:
            try:
                record = decode_line(line)
            except MalformedRecordError as e:
                self.skipped += 1
                logger.debug("Skipping malformed line", path=str(self.path), error=str(e))
                continue

            if not self.filter.matches(record):
                continue

            self.emit(line)
            self.matches += 1

            if self.mode is TailMode.ONCE:
                return True

        return False

    def _result(self, status: TailStatus) -> TailResult:
        logger.debug(
            "Tail finished",
            path=str(self.path),
            status=status.value,
            matches=self.matches,
            skipped=self.skipped,
        )
        return TailResult(status=status, matches=self.matches)

    def _wait_for_file(self, at_end: bool) -> Optional[TailStatus]:
        self.state = TailState.WAITING_FOR_FILE
        while not self._reader.open(at_end=at_end):
            if not self.wait_for_file:
                raise TargetMissingError(f"file not found: {self.path}")
            if status := self._finished():
                return status
            self._sleep(self.poll_interval)
        return None

    def run(self) -> TailResult:
        """
        Tail until the mode's end condition.

        Returns:
            Tail result

        Raises:
            TargetMissingError: If the file is missing and waiting is disabled
        """
        if self.duration is not None and self.mode is not TailMode.FOLLOW:
            self._deadline = self._clock() + self.duration

        prescan = self.filter.since_ts is not None

        try:
            if status := self._wait_for_file(at_end=not prescan):
                return self._result(status)

            self.state = TailState.STREAMING

            logger.debug(
                "Tailing",
                path=str(self.path),
                mode=self.mode.value,
                offset=self._reader.offset,
            )

            # history scan from byte 0 when a minimum ts is given
            while prescan and (lines := self._reader.read_lines()):
                if self._deliver(lines):
                    return self._result(TailStatus.MATCHED)
                if status := self._finished():
                    return self._result(status)

            while True:
                if status := self._finished():
                    return self._result(status)

                change = self._reader.check_path()

                if change is PathChange.ROTATED:
                    # finish the archived file before switching
                    drained = 0
                    while batch := self._reader.read_lines(include_partial=True):
                        drained += len(batch)
                        if self._deliver(batch):
                            return self._result(TailStatus.MATCHED)
                    logger.info(
                        "Shard rotated, reopening",
                        path=str(self.path),
                        drained=drained,
                    )
                    if not self._reader.open(at_end=False):
                        self._sleep(self.poll_interval)
                        continue
                elif change is PathChange.TRUNCATED:
                    logger.info("Shard truncated, rereading", path=str(self.path))
                    self._reader.rewind()

                lines = self._reader.read_lines()

                if lines:
                    self.state = TailState.STREAMING
                    if self._deliver(lines):
                        return self._result(TailStatus.MATCHED)
                else:
                    self.state = TailState.EOF_IDLE
                    self._sleep(self.poll_interval)
        finally:
            self._reader.close()
            self.state = TailState.TERMINATED
