"""
HTTP client for the remote message worker.

Wraps an httpx.Client around the worker's three endpoints:

    GET  /pull?since=<cursor>&limit=<n>
    GET  /lp?since=<cursor>&timeout=<sec>&limit=<n>
    POST /send  {"phone_number_id", "to", "text"}

pull and long_poll raise TransientUpstreamError for anything other than a
2xx JSON object; the caller retries. send reports the outcome instead of
raising on HTTP status.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from relaylog.utils.logging import get_logger

logger = get_logger(__name__)


class TransientUpstreamError(Exception):
    """Raised when the worker could not serve a page; safe to retry."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class Page:
    """
    One page of upstream history.

    Attributes:
        messages: Wrapped provider payloads
        next_since: Cursor to request next
        count: Number of upstream items in this page
        raw: Full decoded response body
    """
    messages: List[Any]
    next_since: int
    count: int
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_body(cls, body: Dict[str, Any], since: int) -> "Page":
        """
        Build a page, defaulting missing fields the way the worker does.

        Args:
            body: Decoded response object
            since: Cursor the page was requested with
        """
        messages = body.get("messages")
        if not isinstance(messages, list):
            messages = []

        next_since = body.get("next_since", since)
        if isinstance(next_since, bool) or not isinstance(next_since, int):
            raise TransientUpstreamError(f"invalid next_since {next_since!r}")

        count = body.get("count", 0)
        if isinstance(count, bool) or not isinstance(count, int):
            count = len(messages)

        return cls(messages=messages, next_since=next_since, count=count, raw=body)


@dataclass
class SendOutcome:
    """
    Result of a send request.

    Attributes:
        status_code: HTTP status (0 if the request never completed)
        body: Decoded JSON body, if any
        text: Raw response text
    """
    status_code: int
    body: Optional[Any] = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class WorkerClient:
    """
    Client for the remote worker.

    Attributes:
        base_url: Worker base URL without trailing slash
    """

    # extra seconds on top of the server-side long-poll wait
    LONG_POLL_SLACK_SEC = 5.0

    def __init__(
        self,
        base_url: str,
        request_timeout_sec: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Worker base URL
            request_timeout_sec: Timeout for pull and send requests
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.request_timeout_sec = request_timeout_sec
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=request_timeout_sec,
            transport=transport,
        )

    def _get_page(self, path: str, params: Dict[str, Any], timeout: float, since: int) -> Page:
        try:
            response = self._client.get(path, params=params, timeout=timeout)
        except httpx.HTTPError as e:
            raise TransientUpstreamError(f"GET {path} failed: {e}") from e

        if not response.is_success:
            raise TransientUpstreamError(
                f"GET {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransientUpstreamError(f"GET {path} returned non-JSON body") from e

        if not isinstance(body, dict):
            raise TransientUpstreamError(f"GET {path} returned a non-object body")

        return Page.from_body(body, since)

    def pull(self, since: int, limit: int) -> Page:
        """
        Fetch one page of history.

        Raises:
            TransientUpstreamError: On transport error, non-2xx or bad body
        """
        return self._get_page(
            "/pull",
            {"since": since, "limit": limit},
            self.request_timeout_sec,
            since,
        )

    def long_poll(self, since: int, timeout_sec: int, limit: int) -> Page:
        """
        Wait server-side up to `timeout_sec` for records after `since`.

        Raises:
            TransientUpstreamError: On transport error, non-2xx or bad body
        """
        return self._get_page(
            "/lp",
            {"since": since, "timeout": timeout_sec, "limit": limit},
            timeout_sec + self.LONG_POLL_SLACK_SEC,
            since,
        )

    def send(self, phone_id: str, to: str, text: str) -> SendOutcome:
        """
        Ask the worker to deliver a text message.

        Returns:
            Outcome; a transport error yields status_code 0
        """
        payload = {"phone_number_id": phone_id, "to": to, "text": text}
        try:
            response = self._client.post("/send", json=payload)
        except httpx.HTTPError as e:
            logger.warning("Send request failed", to=to, error=str(e))
            return SendOutcome(status_code=0, text=str(e))

        try:
            body = response.json()
        except ValueError:
            body = None

        return SendOutcome(status_code=response.status_code, body=body, text=response.text)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "WorkerClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
