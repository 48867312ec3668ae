from __future__ import annotations

import hashlib
from pathlib import Path, PurePosixPath

from app.adapters.base import StoredObject


class EvidenceStoreError(Exception):
    pass


class EvidenceNotFoundError(EvidenceStoreError):
    pass


class LocalEvidenceStore:
    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir
        self._root_dir.mkdir(parents=True, exist_ok=True)

    def _safe_object_path(self, bucket: str, object_key: str) -> Path:
        normalized_bucket = bucket.strip()
        if not normalized_bucket or "/" in normalized_bucket or normalized_bucket in {".", ".."}:
            raise EvidenceStoreError("invalid bucket")
        key_path = PurePosixPath(object_key)
        if key_path.is_absolute() or ".." in key_path.parts:
            raise EvidenceStoreError("invalid object key")
        if not key_path.parts:
            raise EvidenceStoreError("object key is empty")
        return self._root_dir / normalized_bucket / Path(*key_path.parts)

    def put_bytes(
        self,
        *,
        bucket: str,
        object_key: str,
        content: bytes,
        content_type: str,
    ) -> StoredObject:
        path = self._safe_object_path(bucket, object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return StoredObject(
            bucket=bucket,
            object_key=object_key,
            size_bytes=len(content),
            etag=hashlib.sha256(content).hexdigest(),
            content_type=content_type,
            absolute_path=path,
        )

    def resolve(self, *, bucket: str, object_key: str) -> Path:
        path = self._safe_object_path(bucket, object_key)
        if not path.exists() or not path.is_file():
            raise EvidenceNotFoundError("evidence object not found")
        return path
