"""
Replication loop: upstream history -> local logs.

Two phases share one cursor and never run concurrently:

1. Catch-up pages through /pull from the persisted cursor (or 0) until a page
   reports no records.
2. Live long-polls /lp forever, retrying transient failures after a fixed
   backoff.

Every page is written to the global log and the shard pool before the cursor
is advanced and persisted, so a crash re-delivers at most the page in flight
(at-least-once).
"""

import threading
from pathlib import Path
from typing import Callable, List, Optional

from relaylog.consumer.cursor import CursorStore
from relaylog.core.aliases import AliasBook
from relaylog.core.log.format import EventRecord
from relaylog.core.log.log import RotatingLog
from relaylog.core.log.pool import ShardedLogPool
from relaylog.replication.client import Page, TransientUpstreamError, WorkerClient
from relaylog.replication.envelope import extract_events
from relaylog.utils.logging import get_logger

logger = get_logger(__name__)


class EventWriter:
    """
    Writes records to the global log and the per-peer shards.

    Shared by the replication loop and the send queue.
    """

    def __init__(self, global_log: RotatingLog, pool: ShardedLogPool):
        self.global_log = global_log
        self.pool = pool

    def write(self, events: List[EventRecord]) -> int:
        """
        Write records in order.

        Raises:
            OSError: If the global log write fails. Shard failures are
                logged by the pool and do not raise.
        """
        for event in events:
            self.global_log.append(event)
            self.pool.append(event.peer, event)
        return len(events)


class ReplicationLoop:
    """
    Pulls upstream pages into the local logs and advances the cursor.

    Attributes:
        cursor: Current in-memory replication position
    """

    def __init__(
        self,
        client: WorkerClient,
        cursor_store: CursorStore,
        writer: EventWriter,
        aliases_path: Optional[Path] = None,
        pull_limit: int = 200,
        lp_timeout_sec: int = 25,
        retry_backoff_ms: int = 250,
        alias_loader: Optional[Callable[[], AliasBook]] = None,
    ):
        """
        Initialize the loop.

        Args:
            client: Worker client
            cursor_store: Cursor persistence
            writer: Destination logs
            aliases_path: Alias file, reloaded for every page
            pull_limit: Page size
            lp_timeout_sec: Server-side long-poll wait
            retry_backoff_ms: Fixed backoff after a failed request
            alias_loader: Overrides alias loading (default: read aliases_path)
        """
        self.client = client
        self.cursor_store = cursor_store
        self.writer = writer
        self.pull_limit = pull_limit
        self.lp_timeout_sec = lp_timeout_sec
        self.retry_backoff_sec = retry_backoff_ms / 1000.0
        self._load_aliases = alias_loader or (lambda: AliasBook.load(aliases_path))

        self.cursor = 0
        self.pages = 0

    def resume_position(self) -> int:
        """Persisted cursor, or 0 for a full replay."""
        since = self.cursor_store.load()
        if since is None:
            logger.info("No usable cursor, replaying full history")
            return 0
        return since

    def process_page(self, page: Page) -> int:
        """
        Write a page's records.

        Returns:
            Number of records written

        Raises:
            OSError: If the global log cannot be written
        """
        events = extract_events(page.messages, self._load_aliases())
        written = self.writer.write(events)
        self.pages += 1

        logger.debug(
            "Processed page",
            records=written,
            count=page.count,
            next_since=page.next_since,
        )
        return written

    def _advance(self, next_since: int) -> None:
        """Move the cursor forward and persist it. Never moves backwards."""
        if next_since < self.cursor:
            logger.warning(
                "Ignoring cursor regression from upstream",
                cursor=self.cursor,
                next_since=next_since,
            )
            return

        self.cursor = next_since
        try:
            self.cursor_store.save(self.cursor)
        except OSError:
            # in-memory cursor stays ahead; a crash before the next save re-delivers
            logger.warning("Cursor not persisted, will retry on next page", cursor=self.cursor)

    def _apply(self, page: Page, phase: str) -> bool:
        try:
            self.process_page(page)
        except OSError as e:
            logger.error(
                "Failed to write page, cursor not advanced",
                phase=phase,
                cursor=self.cursor,
                error=str(e),
            )
            return False

        self._advance(page.next_since)
        return True

    def catch_up(self, stop_event: Optional[threading.Event] = None) -> int:
        """
        Replay history page by page until an empty page.

        A failed request or write ends the phase; the live phase resumes from
        the same cursor.

        Returns:
            Cursor after catch-up
        """
        stop_event = stop_event or threading.Event()
        self.cursor = self.resume_position()

        logger.info("Starting catch-up", since=self.cursor, limit=self.pull_limit)

        while not stop_event.is_set():
            try:
                page = self.client.pull(self.cursor, self.pull_limit)
            except TransientUpstreamError as e:
                logger.warning("Catch-up pull failed, switching to live", cursor=self.cursor, error=str(e))
                break

            if not self._apply(page, "catch-up"):
                break

            if page.count == 0:
                break

        logger.info("Catch-up finished", cursor=self.cursor, pages=self.pages)
        return self.cursor

    def run_live(self, stop_event: threading.Event) -> int:
        """
        Long-poll for new records until the stop event is set.

        Returns:
            Cursor when stopped
        """
        logger.info("Starting live replication", since=self.cursor, timeout=self.lp_timeout_sec)

        while not stop_event.is_set():
            try:
                page = self.client.long_poll(self.cursor, self.lp_timeout_sec, self.pull_limit)
            except TransientUpstreamError as e:
                logger.warning(
                    "Long-poll failed, retrying",
                    cursor=self.cursor,
                    status_code=e.status_code,
                    error=str(e),
                )
                stop_event.wait(self.retry_backoff_sec)
                continue

            if not self._apply(page, "live"):
                stop_event.wait(self.retry_backoff_sec)

        logger.info("Live replication stopped", cursor=self.cursor)
        return self.cursor

    def run(self, stop_event: threading.Event) -> int:
        """Catch up, then follow live updates until stopped."""
        self.catch_up(stop_event)
        return self.run_live(stop_event)
