"""
Decoding of wrapped provider payloads into event records.

Each item of a page's `messages` array is a provider webhook body:

    {"entry": [{"changes": [{"value": {
        "messages": [{"type": "text", "from": "4477...", "text": {"body": "hi"}}],
        "statuses": [{"recipient_id": "4477...", "status": "delivered"}]
    }}]}]}

Text messages become `received` records and statuses become `status`
records. Branches with an unexpected shape are skipped.
"""

from typing import Any, Iterator, List

from relaylog.core.aliases import AliasBook
from relaylog.core.log.format import EventRecord, now_ms


def _items(obj: Any, key: str) -> List[Any]:
    if not isinstance(obj, dict):
        return []
    value = obj.get(key)
    return value if isinstance(value, list) else []


def _str(obj: Any, key: str) -> str:
    value = obj.get(key) if isinstance(obj, dict) else None
    return value if isinstance(value, str) else ""


def _change_values(payload: Any) -> Iterator[dict]:
    for entry in _items(payload, "entry"):
        for change in _items(entry, "changes"):
            if isinstance(change, dict) and isinstance(change.get("value"), dict):
                yield change["value"]


def extract_events(messages: List[Any], aliases: AliasBook) -> List[EventRecord]:
    """
    Turn a page's wrapped payloads into records, in page order.

    Args:
        messages: The page's `messages` array
        aliases: Alias book for peer keys

    Returns:
        Records stamped with the current time
    """
    events: List[EventRecord] = []

    for payload in messages:
        for value in _change_values(payload):
            for message in _items(value, "messages"):
                if _str(message, "type") != "text":
                    continue
                peer = aliases.peer_key(_str(message, "from"))
                events.append(EventRecord.received(peer, _str(message.get("text"), "body"), ts=now_ms()))

            for status in _items(value, "statuses"):
                if not isinstance(status, dict):
                    continue
                peer = aliases.peer_key(_str(status, "recipient_id"))
                events.append(EventRecord.status_update(peer, _str(status, "status"), ts=now_ms()))

    return events
