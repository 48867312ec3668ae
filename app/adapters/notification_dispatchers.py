from __future__ import annotations

import os
from threading import Lock

import httpx
import structlog

from app.adapters.base import DispatchResult, NotificationMessage

NOTIFY_API_URL = os.getenv("NOTIFY_API_URL", "")
NOTIFY_API_KEY = os.getenv("NOTIFY_API_KEY", "")
NOTIFY_FROM = os.getenv("NOTIFY_FROM", "Site Inspection Service <noreply@inspections.local>")
NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10"))

logger = structlog.get_logger(__name__)


class LogNotificationDispatcher:
    """Used when no provider is configured: the message is only logged."""

    def send(self, message: NotificationMessage) -> DispatchResult:
        logger.info(
            "notification_logged",
            recipient=message.recipient,
            subject=message.subject,
        )
        return DispatchResult(ok=True, detail="logged", provider_response={"provider": "log"})


class HttpNotificationDispatcher:
    def __init__(
        self,
        *,
        api_url: str,
        api_key: str = "",
        sender: str = NOTIFY_FROM,
        timeout_seconds: float = NOTIFY_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def _payload(self, message: NotificationMessage) -> dict[str, object]:
        recipient: dict[str, str] = {"email": message.recipient}
        if message.recipient_name:
            recipient["name"] = message.recipient_name
        return {
            "from": self._sender,
            "to": [recipient],
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text_body},
                {"type": "text/html", "value": message.html_body},
            ],
        }

    def send(self, message: NotificationMessage) -> DispatchResult:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            with httpx.Client(timeout=self._timeout_seconds, transport=self._transport) as client:
                response = client.post(self._api_url, json=self._payload(message), headers=headers)
        except httpx.HTTPError as exc:
            return DispatchResult(ok=False, detail=f"transport_error:{exc}")
        body: dict[str, object] = {"status_code": response.status_code}
        if response.text:
            body["body"] = response.text[:2000]
        if response.is_success:
            return DispatchResult(ok=True, detail="sent", provider_response=body)
        return DispatchResult(ok=False, detail=f"http_error:{response.status_code}", provider_response=body)


class RecordingNotificationDispatcher:
    """In-memory dispatcher for local runs and tests."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[NotificationMessage] = []
        self._lock = Lock()

    def send(self, message: NotificationMessage) -> DispatchResult:
        if self.fail:
            raise ConnectionError("notification provider unreachable")
        with self._lock:
            self.sent.append(message)
        return DispatchResult(ok=True, detail="recorded", provider_response={"provider": "memory"})


def build_default_dispatcher() -> LogNotificationDispatcher | HttpNotificationDispatcher:
    if NOTIFY_API_URL:
        return HttpNotificationDispatcher(api_url=NOTIFY_API_URL, api_key=NOTIFY_API_KEY)
    return LogNotificationDispatcher()
