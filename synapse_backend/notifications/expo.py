"""Expo push API client.

Docs: https://docs.expo.dev/push-notifications/sending-notifications/

POST {EXPO_PUSH_URL} with a JSON list of messages (at most 100 per request). The
response carries one ticket per message, in order:

    {"data": [{"status": "ok", "id": "..."},
              {"status": "error", "message": "...", "details": {"error": "DeviceNotRegistered"}}]}
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

import requests

from synapse_backend.errors import DependencyError, PushDeliveryError
from synapse_backend.util.normalization import is_expo_push_token


MAX_MESSAGES_PER_REQUEST = 100
DEVICE_NOT_REGISTERED = "DeviceNotRegistered"


def _debug(msg: str) -> None:
    print(f"[push] {msg}")


@dataclass(frozen=True)
class PushMessage:
    to: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "sound": "default",
            "title": self.title or "Synapse",
            "body": self.body,
            "data": self.data,
        }


@dataclass(frozen=True)
class PushTicket:
    token: str
    status: str
    ticket_id: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def device_not_registered(self) -> bool:
        return self.error == DEVICE_NOT_REGISTERED


def chunked(items: Sequence[Any], size: int = MAX_MESSAGES_PER_REQUEST) -> Iterator[List[Any]]:
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


class ExpoPushClient:
    def __init__(
        self,
        url: str,
        *,
        access_token: Optional[str] = None,
        timeout_seconds: float = 15,
        retries: int = 3,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not url:
            raise ValueError("push_url_missing")
        self.url = url
        self.access_token = access_token
        self.timeout_seconds = timeout_seconds
        self.retries = max(1, int(retries))
        self._http = session or requests.Session()
        self._sleep = sleep

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def send(self, messages: Iterable[PushMessage]) -> List[PushTicket]:
        """Send messages, returning one ticket per message.

        Messages addressed to something that is not an Expo push token are not sent and
        come back as error tickets. Raises PushDeliveryError (a DependencyError) when the
        provider cannot be reached or rejects a whole request; it carries the tickets of
        the chunks sent before the failure.
        """
        tickets: List[PushTicket] = []
        valid: List[PushMessage] = []
        for m in messages:
            if is_expo_push_token(m.to):
                valid.append(m)
            else:
                _debug(f"Skipping invalid push token: {m.to!r}")
                tickets.append(PushTicket(token=m.to, status="error", error="InvalidPushToken"))

        for chunk in chunked(valid):
            try:
                tickets.extend(self._send_chunk(chunk))
            except DependencyError as e:
                raise PushDeliveryError(e.message, tickets=tickets) from e
        return tickets

    def _send_chunk(self, chunk: List[PushMessage]) -> List[PushTicket]:
        payload = [m.to_payload() for m in chunk]
        last_err: Optional[str] = None
        for attempt in range(self.retries):
            try:
                r = self._http.post(
                    self.url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout_seconds,
                )
            except requests.RequestException as e:
                last_err = str(e)
                if attempt < self.retries - 1:
                    self._sleep(1.5 * (attempt + 1))
                    continue
                break

            if r.status_code != 200:
                last_err = f"HTTP {r.status_code}: {r.text}"
                # Retry on 429/5xx
                if (r.status_code == 429 or 500 <= r.status_code < 600) and attempt < self.retries - 1:
                    self._sleep(1.5 * (attempt + 1))
                    continue
                break

            return self._parse_tickets(chunk, r.json() if r.text else {})

        _debug(f"Push request failed: {last_err}")
        raise DependencyError("push_provider_unavailable")

    def _parse_tickets(self, chunk: List[PushMessage], body: Any) -> List[PushTicket]:
        if not isinstance(body, dict):
            raise DependencyError("push_provider_bad_response")
        if body.get("errors") and not body.get("data"):
            _debug(f"Push request rejected: {body.get('errors')}")
            raise DependencyError("push_provider_rejected_request")

        data = body.get("data")
        if isinstance(data, dict):
            # A single-message request may come back as a single ticket object.
            data = [data]
        if not isinstance(data, list) or len(data) != len(chunk):
            raise DependencyError("push_provider_bad_response")

        out: List[PushTicket] = []
        for message, raw in zip(chunk, data):
            raw = raw or {}
            details = raw.get("details") or {}
            out.append(
                PushTicket(
                    token=message.to,
                    status=str(raw.get("status") or "error"),
                    ticket_id=raw.get("id"),
                    error=details.get("error"),
                    message=raw.get("message"),
                )
            )
        return out
