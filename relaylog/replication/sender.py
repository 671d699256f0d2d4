"""
Outbound send queue.

Reads newline-delimited JSON envelopes from a named pipe:

    {"to": "447700900123", "text": "hello"}
    {"alias": "max", "text": "hello"}

Each envelope is sent through the worker, its outcome recorded in the meta
log, and a `sent` (or `status: failed`) record written to the event logs.
"""

import json
import os
import stat
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from relaylog.core.aliases import AliasBook
from relaylog.core.log.format import EventRecord, now_ms
from relaylog.core.log.segment import AppendStream
from relaylog.replication.client import SendOutcome, WorkerClient
from relaylog.replication.loop import EventWriter
from relaylog.utils.logging import get_logger

logger = get_logger(__name__)


class MetaLog:
    """Append-only JSON log of send attempts. Never rotated."""

    def __init__(self, path: Path, fsync_on_append: bool = False):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._stream = AppendStream(self.path, fsync_on_append=fsync_on_append)

    def append(self, entry: Dict[str, Any]) -> None:
        data = (json.dumps(entry, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")
        with self._lock:
            self._stream.append(data)

    def close(self) -> None:
        with self._lock:
            self._stream.close()


def describe_outcome(outcome: SendOutcome) -> Dict[str, Any]:
    """
    Summarize a worker response for the meta log.

    Returns:
        {"meta": {...}} for a 2xx response, {"error": {...}} otherwise
    """
    body = outcome.body if isinstance(outcome.body, dict) else None

    if outcome.ok:
        meta: Dict[str, Any] = {}
        if body is not None:
            contacts = body.get("contacts")
            if isinstance(contacts, list) and contacts and isinstance(contacts[0], dict):
                meta["wa_id"] = contacts[0].get("wa_id", "")
            messages = body.get("messages")
            if isinstance(messages, list) and messages and isinstance(messages[0], dict):
                meta["message_id"] = messages[0].get("id", "")
        return {"meta": meta}

    if body is not None and isinstance(body.get("error"), dict):
        err = body["error"]
        error: Dict[str, Any] = {
            "code": err.get("code", 0),
            "type": err.get("type", ""),
            "message": err.get("message", ""),
            "fbtrace_id": err.get("fbtrace_id", ""),
        }
        if isinstance(err.get("error_data"), dict):
            error["details"] = err["error_data"].get("details", "")
        return {"error": error}

    return {"error": {"message": "non-JSON or empty response", "raw": outcome.text}}


class SendQueue:
    """
    Named-pipe consumer that sends messages and logs the results.

    Attributes:
        fifo_path: Named pipe path
    """

    def __init__(
        self,
        fifo_path: Path,
        client: WorkerClient,
        writer: EventWriter,
        meta_log: MetaLog,
        phone_id: str,
        aliases_path: Optional[Path] = None,
        alias_loader: Optional[Callable[[], AliasBook]] = None,
    ):
        """
        Initialize the queue. The pipe is opened by start().

        Args:
            fifo_path: Named pipe path
            client: Worker client
            writer: Event log writer
            meta_log: Meta log for send outcomes
            phone_id: Sender phone number id
            aliases_path: Alias file, reloaded for every envelope
            alias_loader: Overrides alias loading
        """
        self.fifo_path = Path(fifo_path)
        self.client = client
        self.writer = writer
        self.meta_log = meta_log
        self.phone_id = phone_id
        self._load_aliases = alias_loader or (lambda: AliasBook.load(aliases_path))

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._read_fd: Optional[int] = None
        self._keepalive_fd: Optional[int] = None

    def handle_line(self, line: str) -> Optional[EventRecord]:
        """
        Process one envelope.

        Returns:
            The event record written, or None if the envelope was rejected
        """
        line = line.strip()
        if not line:
            return None

        try:
            envelope = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Bad send JSON", line=line)
            return None

        if not isinstance(envelope, dict):
            logger.warning("Send envelope must be an object", line=line)
            return None

        aliases = self._load_aliases()
        to = envelope.get("to") or envelope.get("alias") or ""
        text = envelope.get("text") or ""
        if not isinstance(to, str) or not isinstance(text, str) or not to or not text:
            logger.warning("Send needs {to|alias, text}", line=line)
            return None

        to = aliases.address_for(to)
        outcome = self.client.send(self.phone_id, to, text)
        ts = now_ms()
        peer = aliases.peer_key(to)

        meta_entry: Dict[str, Any] = {
            "ts": ts,
            "op": "send",
            "http": outcome.status_code,
            "to": to,
            "text": text,
            "phone_number_id": self.phone_id,
        }
        meta_entry.update(describe_outcome(outcome))
        try:
            self.meta_log.append(meta_entry)
        except OSError as e:
            logger.error("Failed to write meta log", error=str(e))

        if outcome.ok:
            event = EventRecord.sent(peer, text, ts=ts)
        else:
            logger.warning("Send failed", to=to, http=outcome.status_code)
            event = EventRecord.status_update(peer, "failed", ts=ts)

        try:
            self.writer.write([event])
        except OSError as e:
            logger.error("Failed to log send event", peer=peer, error=str(e))

        return event

    def _ensure_fifo(self) -> None:
        if self.fifo_path.exists():
            if not stat.S_ISFIFO(self.fifo_path.stat().st_mode):
                raise OSError(f"not a named pipe: {self.fifo_path}")
            return
        self.fifo_path.parent.mkdir(parents=True, exist_ok=True)
        os.mkfifo(self.fifo_path, 0o600)
        logger.info("Created send pipe", path=str(self.fifo_path))

    def open(self) -> None:
        """
        Create and open the pipe with a keep-alive writer.

        The reader is opened non-blocking first so opening does not wait for
        a writer, then switched back to blocking reads.
        """
        self._ensure_fifo()
        self._read_fd = os.open(self.fifo_path, os.O_RDONLY | os.O_NONBLOCK | os.O_CLOEXEC)
        self._keepalive_fd = os.open(self.fifo_path, os.O_WRONLY | os.O_CLOEXEC)
        os.set_blocking(self._read_fd, True)

    def _run(self) -> None:
        with os.fdopen(self._read_fd, "r", encoding="utf-8", errors="replace") as pipe:
            self._read_fd = None
            while not self._stop.is_set():
                line = pipe.readline()
                if not line:
                    # all writers gone, including keep-alive (shutdown)
                    break
                if self._stop.is_set():
                    break
                try:
                    self.handle_line(line)
                except Exception as e:
                    logger.error("Send queue error", error=str(e), exc_info=True)

        logger.info("Send queue stopped")

    def start(self) -> None:
        """Open the pipe and start the reader thread."""
        if self._thread is not None:
            return

        self.open()
        self._thread = threading.Thread(target=self._run, name="send-queue", daemon=True)
        self._thread.start()

        logger.info("Send queue started", path=str(self.fifo_path))

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the reader thread by waking it through the keep-alive writer."""
        self._stop.set()

        if self._keepalive_fd is not None:
            try:
                os.write(self._keepalive_fd, b"\n")
            except OSError as e:
                logger.debug("Could not wake send queue", error=str(e))
            os.close(self._keepalive_fd)
            self._keepalive_fd = None

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
