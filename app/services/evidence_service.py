from __future__ import annotations

import base64
import binascii
import mimetypes
import os
from pathlib import Path
from uuid import uuid4

import structlog

from app.adapters.base import EvidenceStore
from app.adapters.evidence_store import EvidenceNotFoundError, EvidenceStoreError, LocalEvidenceStore
from app.domain.errors import DependencyError, NotFoundError, ValidationError
from app.domain.models import EvidenceKind, EvidenceRead, EvidenceUpload

EVIDENCE_ROOT = Path(os.getenv("EVIDENCE_ROOT", "data/evidence"))
EVIDENCE_PUBLIC_BASE_URL = os.getenv("EVIDENCE_PUBLIC_BASE_URL", "/api/evidence/objects")
MAX_EVIDENCE_BYTES = 10 * 1024 * 1024

_BUCKETS = {
    EvidenceKind.SIGNATURE: "signatures",
    EvidenceKind.PHOTO: "photos",
}

logger = structlog.get_logger(__name__)


class EvidenceService:
    def __init__(self, store: EvidenceStore | None = None) -> None:
        self._store = store or LocalEvidenceStore(EVIDENCE_ROOT)

    @staticmethod
    def _decode(content_base64: str) -> bytes:
        payload = content_base64
        if payload.startswith("data:") and "," in payload:
            # data URLs as produced by canvas signature pads
            payload = payload.split(",", 1)[1]
        try:
            content = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("evidence content is not valid base64") from exc
        if not content:
            raise ValidationError("evidence content is empty")
        if len(content) > MAX_EVIDENCE_BYTES:
            raise ValidationError(f"evidence content exceeds {MAX_EVIDENCE_BYTES} bytes")
        return content

    def upload(self, tenant_id: str, payload: EvidenceUpload) -> EvidenceRead:
        content = self._decode(payload.content_base64)
        bucket = _BUCKETS[payload.kind]
        extension = mimetypes.guess_extension(payload.content_type) or ".bin"
        object_key = f"{tenant_id}/{uuid4()}{extension}"
        try:
            stored = self._store.put_bytes(
                bucket=bucket,
                object_key=object_key,
                content=content,
                content_type=payload.content_type,
            )
        except (EvidenceStoreError, OSError) as exc:
            logger.error("evidence_store_failed", bucket=bucket, exc_info=exc)
            raise DependencyError("evidence store unavailable") from exc

        logger.info("evidence_stored", bucket=bucket, object_key=object_key, size_bytes=stored.size_bytes)
        return EvidenceRead(
            reference=f"{EVIDENCE_PUBLIC_BASE_URL.rstrip('/')}/{bucket}/{object_key}",
            bucket=stored.bucket,
            object_key=stored.object_key,
            size_bytes=stored.size_bytes,
            etag=stored.etag,
            content_type=stored.content_type,
        )

    def resolve(self, tenant_id: str, bucket: str, object_key: str) -> Path:
        if not object_key.startswith(f"{tenant_id}/"):
            raise NotFoundError("evidence object not found")
        try:
            return self._store.resolve(bucket=bucket, object_key=object_key)
        except EvidenceNotFoundError as exc:
            raise NotFoundError("evidence object not found") from exc
        except EvidenceStoreError as exc:
            raise ValidationError(str(exc)) from exc
