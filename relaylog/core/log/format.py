"""
Event record format for relaylog shards.

Every shard line is one JSON object terminated by a newline:

    {"ts": 1700000000000, "kind": "received", "peer": "max", "text": "hi"}
    {"ts": 1700000000001, "kind": "status", "peer": "max", "status": "read"}

`received` and `sent` carry `text`; `status` carries `status`.
"""

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class EventKind(str, Enum):
    """Event record kinds."""

    RECEIVED = "received"
    SENT = "sent"
    STATUS = "status"


class MalformedRecordError(ValueError):
    """Raised when a line is not a well-formed event record."""
    pass


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class EventRecord:
    """
    A single event in a shard.

    Attributes:
        ts: Milliseconds since epoch, assigned when the record is built
        kind: Event kind
        peer: Counterparty key (alias when known, raw identifier otherwise)
        text: Message body for received/sent events
        status: Delivery status for status events
    """

    ts: int
    kind: EventKind
    peer: str
    text: Optional[str] = None
    status: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate the tagged fields."""
        if not isinstance(self.kind, EventKind):
            raise MalformedRecordError(f"Unknown kind: {self.kind!r}")
        if isinstance(self.ts, bool) or not isinstance(self.ts, int) or self.ts < 0:
            raise MalformedRecordError(f"ts must be a non-negative integer, got {self.ts!r}")
        if not isinstance(self.peer, str):
            raise MalformedRecordError(f"peer must be a string, got {self.peer!r}")
        if self.kind is EventKind.STATUS:
            if not isinstance(self.status, str):
                raise MalformedRecordError("status record requires a string 'status'")
        elif not isinstance(self.text, str):
            raise MalformedRecordError(f"{self.kind.value} record requires a string 'text'")

    @classmethod
    def received(cls, peer: str, text: str, ts: Optional[int] = None) -> "EventRecord":
        return cls(ts=now_ms() if ts is None else ts, kind=EventKind.RECEIVED, peer=peer, text=text)

    @classmethod
    def sent(cls, peer: str, text: str, ts: Optional[int] = None) -> "EventRecord":
        return cls(ts=now_ms() if ts is None else ts, kind=EventKind.SENT, peer=peer, text=text)

    @classmethod
    def status_update(cls, peer: str, status: str, ts: Optional[int] = None) -> "EventRecord":
        return cls(ts=now_ms() if ts is None else ts, kind=EventKind.STATUS, peer=peer, status=status)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the wire dictionary (key order is stable)."""
        data: Dict[str, Any] = {
            "ts": self.ts,
            "kind": self.kind.value,
            "peer": self.peer,
        }
        if self.kind is EventKind.STATUS:
            data["status"] = self.status
        else:
            data["text"] = self.text
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "EventRecord":
        """
        Build a record from a decoded JSON object.

        Raises:
            MalformedRecordError: If the object has the wrong shape
        """
        if not isinstance(data, dict):
            raise MalformedRecordError("record must be a JSON object")
        try:
            kind = EventKind(data.get("kind"))
        except ValueError as e:
            raise MalformedRecordError(f"Unknown kind: {data.get('kind')!r}") from e
        return cls(
            ts=data.get("ts"),
            kind=kind,
            peer=data.get("peer"),
            text=data.get("text") if kind is not EventKind.STATUS else None,
            status=data.get("status") if kind is EventKind.STATUS else None,
        )

    def to_json_line(self) -> bytes:
        """
        Encode as one newline-terminated JSON line.

        json.dumps escapes embedded newlines, so the result is always a
        single line.
        """
        return (json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")

    @classmethod
    def from_json_line(cls, line: bytes | str) -> "EventRecord":
        """
        Decode one line.

        Raises:
            MalformedRecordError: If the line is not valid JSON or has the
                wrong shape
        """
        return cls.from_dict(decode_line(line))


def decode_line(line: bytes | str) -> Dict[str, Any]:
    """
    Decode a raw shard line into a JSON object without checking its shape.

    Raises:
        MalformedRecordError: If the line is not a JSON object
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedRecordError(f"invalid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise MalformedRecordError("record must be a JSON object")
    return obj
