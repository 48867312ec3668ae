from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from app.domain.models import InspectionReport


@dataclass(frozen=True)
class NotificationMessage:
    recipient: str
    subject: str
    html_body: str
    text_body: str
    recipient_name: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    ok: bool
    detail: str
    provider_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StoredObject:
    bucket: str
    object_key: str
    size_bytes: int
    etag: str
    content_type: str
    absolute_path: Path


class NotificationDispatcher(Protocol):
    def send(self, message: NotificationMessage) -> DispatchResult: ...


class EvidenceStore(Protocol):
    def put_bytes(self, *, bucket: str, object_key: str, content: bytes, content_type: str) -> StoredObject: ...

    def resolve(self, *, bucket: str, object_key: str) -> Path: ...


class DocumentRenderer(Protocol):
    def render(self, report: InspectionReport) -> Path: ...
