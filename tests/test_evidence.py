from __future__ import annotations

import base64
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine

from app import main as app_main
from app.adapters.evidence_store import LocalEvidenceStore
from app.api.routers.evidence import get_evidence_service
from app.infra import audit, db, events
from app.infra.auth import create_access_token
from app.services.evidence_service import EvidenceService

PNG_BYTES = b"\x89PNG\r\n\x1a\nsignature-strokes"


@pytest.fixture()
def evidence_client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[TestClient, None, None]:
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'evidence_test.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    store = LocalEvidenceStore(tmp_path / "evidence")
    app_main.app.dependency_overrides[get_evidence_service] = lambda: EvidenceService(store)
    client = TestClient(app_main.app)
    yield client
    client.close()
    app_main.app.dependency_overrides.clear()


def _auth_header(tenant_id: str, permissions: list[str]) -> dict[str, str]:
    token = create_access_token(user_id="inspector-1", tenant_id=tenant_id, permissions=permissions)
    return {"Authorization": f"Bearer {token}"}


def test_signature_upload_and_download(evidence_client: TestClient) -> None:
    headers = _auth_header("tenant-a", ["evidence.write"])
    data_url = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")

    uploaded = evidence_client.post(
        "/api/evidence",
        json={"kind": "signature", "content_base64": data_url, "content_type": "image/png"},
        headers=headers,
    )
    assert uploaded.status_code == 201
    body = uploaded.json()
    assert body["bucket"] == "signatures"
    assert body["object_key"].startswith("tenant-a/")
    assert body["object_key"].endswith(".png")
    assert body["reference"] == f"/api/evidence/objects/signatures/{body['object_key']}"
    assert body["size_bytes"] == len(PNG_BYTES)

    downloaded = evidence_client.get(body["reference"], headers=_auth_header("tenant-a", ["inspection.read"]))
    assert downloaded.status_code == 200
    assert downloaded.content == PNG_BYTES

    other_tenant = evidence_client.get(body["reference"], headers=_auth_header("tenant-b", ["inspection.read"]))
    assert other_tenant.status_code == 404


def test_upload_rejects_invalid_content(evidence_client: TestClient) -> None:
    headers = _auth_header("tenant-a", ["evidence.write"])

    not_base64 = evidence_client.post(
        "/api/evidence",
        json={"kind": "photo", "content_base64": "%%% not base64 %%%", "content_type": "image/jpeg"},
        headers=headers,
    )
    empty = evidence_client.post(
        "/api/evidence",
        json={"kind": "photo", "content_base64": "", "content_type": "image/jpeg"},
        headers=headers,
    )
    assert not_base64.status_code == 400
    assert empty.status_code == 400


def test_upload_requires_permission(evidence_client: TestClient) -> None:
    response = evidence_client.post(
        "/api/evidence",
        json={"kind": "photo", "content_base64": base64.b64encode(b"jpeg").decode("ascii")},
        headers=_auth_header("tenant-a", ["inspection.read"]),
    )
    assert response.status_code == 403


def test_upload_requires_token(evidence_client: TestClient) -> None:
    response = evidence_client.post(
        "/api/evidence",
        json={"kind": "photo", "content_base64": base64.b64encode(b"jpeg").decode("ascii")},
    )
    assert response.status_code == 401
