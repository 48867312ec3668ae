from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from app import main as app_main
from app.domain.errors import PreconditionError
from app.domain.models import SiteCreate, StaffMemberCreate, Tier2Decision, WorkItemCreate, ensure_utc
from app.domain.state_machine import WorkItemStatus
from app.infra import audit, db, events
from app.infra.auth import create_access_token
from app.services.assignment_service import AssignmentService, WorkItemSequence
from app.services.directory_service import DirectoryService

TENANT = "tenant-assignment"


@pytest.fixture()
def assignment_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "assignment_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _admin_token(tenant_id: str = TENANT) -> str:
    return create_access_token(user_id="admin-1", tenant_id=tenant_id, permissions=["*"], role="admin")


def _future(days: int = 7) -> str:
    return (datetime.now(UTC) + timedelta(days=days)).isoformat()


def _seed_directory(client: TestClient, token: str) -> tuple[str, str]:
    site_resp = client.post(
        "/api/directory/sites",
        json={"name": "Hillside Clinic", "category": "health", "latitude": 1.0, "longitude": 2.0},
        headers=_auth_header(token),
    )
    assert site_resp.status_code == 201
    staff_resp = client.post(
        "/api/directory/staff",
        json={"name": "Nia Nurse", "role": "inspector", "category": "health"},
        headers=_auth_header(token),
    )
    assert staff_resp.status_code == 201
    return site_resp.json()["id"], staff_resp.json()["id"]


def _create_item(client: TestClient, token: str, site_id: str, assignee_id: str, **overrides: object) -> dict:
    payload: dict[str, object] = {
        "site_id": site_id,
        "assignee_id": assignee_id,
        "category": "health",
        "deadline": _future(),
        "priority": "medium",
        "instructions": "Check the cold chain log.",
    }
    payload.update(overrides)
    response = client.post("/api/assignments", json=payload, headers=_auth_header(token))
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_get_work_item(assignment_client: TestClient) -> None:
    token = _admin_token()
    site_id, assignee_id = _seed_directory(assignment_client, token)

    created = _create_item(assignment_client, token, site_id, assignee_id)
    assert created["status"] == "pending"
    assert created["completed_at"] is None
    assert created["second_tier_reviewed"] is False
    assert created["created_by"] == "admin-1"

    fetched = assignment_client.get(f"/api/assignments/{created['id']}", headers=_auth_header(token))
    assert fetched.status_code == 200
    assert fetched.json()["id"] == created["id"]


def test_create_rejects_past_deadline_and_unknown_references(assignment_client: TestClient) -> None:
    token = _admin_token()
    site_id, assignee_id = _seed_directory(assignment_client, token)
    base = {"site_id": site_id, "assignee_id": assignee_id, "category": "health", "deadline": _future()}

    past = assignment_client.post(
        "/api/assignments",
        json={**base, "deadline": (datetime.now(UTC) - timedelta(hours=1)).isoformat()},
        headers=_auth_header(token),
    )
    unknown_site = assignment_client.post(
        "/api/assignments",
        json={**base, "site_id": "missing-site"},
        headers=_auth_header(token),
    )
    unknown_assignee = assignment_client.post(
        "/api/assignments",
        json={**base, "assignee_id": "missing-staff"},
        headers=_auth_header(token),
    )
    assert past.status_code == 400
    assert unknown_site.status_code == 400
    assert unknown_assignee.status_code == 400


def test_list_filters_newest_first(assignment_client: TestClient) -> None:
    token = _admin_token()
    site_id, assignee_id = _seed_directory(assignment_client, token)
    first = _create_item(assignment_client, token, site_id, assignee_id)
    second = _create_item(assignment_client, token, site_id, assignee_id, category="education")

    all_items = assignment_client.get("/api/assignments", headers=_auth_header(token))
    assert [row["id"] for row in all_items.json()] == [second["id"], first["id"]]

    education = assignment_client.get(
        "/api/assignments",
        params={"category": "education", "assignee": assignee_id, "site": site_id, "status": "pending"},
        headers=_auth_header(token),
    )
    assert [row["id"] for row in education.json()] == [second["id"]]

    other_tenant = assignment_client.get("/api/assignments", headers=_auth_header(_admin_token("tenant-b")))
    assert other_tenant.json() == []


def test_work_item_sequence_is_lazy_and_restartable(assignment_client: TestClient) -> None:
    token = _admin_token()
    site_id, assignee_id = _seed_directory(assignment_client, token)
    ids = [_create_item(assignment_client, token, site_id, assignee_id)["id"] for _ in range(3)]

    sequence = WorkItemSequence(TENANT, page_size=2)
    assert [item.id for item in sequence] == list(reversed(ids))

    newest = _create_item(assignment_client, token, site_id, assignee_id)["id"]
    assert [item.id for item in sequence] == [newest, *reversed(ids)]


def test_update_limits_status_changes(assignment_client: TestClient) -> None:
    token = _admin_token()
    site_id, assignee_id = _seed_directory(assignment_client, token)
    item = _create_item(assignment_client, token, site_id, assignee_id)

    moved = assignment_client.put(
        f"/api/assignments/{item['id']}",
        json={"status": "under_review", "priority": "high", "instructions": "Bring the thermometer."},
        headers=_auth_header(token),
    )
    assert moved.status_code == 200
    assert moved.json()["status"] == "under_review"
    assert moved.json()["priority"] == "high"

    completed = assignment_client.put(
        f"/api/assignments/{item['id']}",
        json={"status": "completed"},
        headers=_auth_header(token),
    )
    assert completed.status_code == 400


def test_delete_blocked_while_referenced(assignment_client: TestClient) -> None:
    token = _admin_token()
    site_id, assignee_id = _seed_directory(assignment_client, token)
    referenced = _create_item(assignment_client, token, site_id, assignee_id)
    free = _create_item(assignment_client, token, site_id, assignee_id)

    ticket = assignment_client.post(
        "/api/approvals",
        json={"work_item_id": referenced["id"], "site_id": site_id},
        headers=_auth_header(token),
    )
    assert ticket.status_code == 201

    blocked = assignment_client.delete(f"/api/assignments/{referenced['id']}", headers=_auth_header(token))
    assert blocked.status_code == 409

    deleted = assignment_client.delete(f"/api/assignments/{free['id']}", headers=_auth_header(token))
    assert deleted.status_code == 204
    missing = assignment_client.get(f"/api/assignments/{free['id']}", headers=_auth_header(token))
    assert missing.status_code == 404


def _service_work_item(service: AssignmentService) -> str:
    directory = DirectoryService()
    site = directory.create_site(TENANT, SiteCreate(name="Riverside School", category="education"))
    staff = directory.create_staff(TENANT, StaffMemberCreate(name="Omar", role="inspector", category="education"))
    item = service.create_work_item(
        TENANT,
        WorkItemCreate(
            site_id=site.id,
            assignee_id=staff.id,
            category="education",
            deadline=datetime.now(UTC) + timedelta(days=2),
        ),
    )
    return item.id


def test_mark_completed_is_idempotent(assignment_client: TestClient) -> None:
    service = AssignmentService()
    item_id = _service_work_item(service)
    first_at = datetime(2026, 5, 1, 10, 0, tzinfo=UTC)
    second_at = datetime(2026, 5, 2, 11, 0, tzinfo=UTC)

    first = service.mark_completed(TENANT, item_id, completed_by="inspector-1", completed_at=first_at)
    second = service.mark_completed(TENANT, item_id, completed_by="inspector-2", completed_at=second_at)

    assert first.status == WorkItemStatus.COMPLETED
    assert ensure_utc(first.completed_at) == first_at  # type: ignore[arg-type]
    assert ensure_utc(second.completed_at) == first_at  # type: ignore[arg-type]
    assert second.completed_by == "inspector-1"
    assert second.final_status == "completed"


def test_second_tier_review_requires_completion(assignment_client: TestClient) -> None:
    service = AssignmentService()
    item_id = _service_work_item(service)
    reviewed_at = datetime(2026, 5, 3, 8, 0, tzinfo=UTC)

    with pytest.raises(PreconditionError):
        service.mark_second_tier_reviewed(
            TENANT,
            item_id,
            decision=Tier2Decision.SATISFACTORY,
            reviewed_by="director-1",
            reviewed_at=reviewed_at,
        )

    service.mark_completed(TENANT, item_id, completed_by="inspector-1", completed_at=reviewed_at)
    reviewed = service.mark_second_tier_reviewed(
        TENANT,
        item_id,
        decision=Tier2Decision.SATISFACTORY,
        reviewed_by="director-1",
        reviewed_at=reviewed_at,
    )
    repeated = service.mark_second_tier_reviewed(
        TENANT,
        item_id,
        decision=Tier2Decision.NEEDS_IMPROVEMENT,
        reviewed_by="director-2",
        reviewed_at=reviewed_at + timedelta(days=1),
    )

    assert reviewed.second_tier_reviewed is True
    assert repeated.second_tier_decision == Tier2Decision.SATISFACTORY
    assert repeated.second_tier_reviewed_by == "director-1"
    assert ensure_utc(repeated.second_tier_reviewed_at) == reviewed_at  # type: ignore[arg-type]


def test_completed_items_are_read_only(assignment_client: TestClient) -> None:
    token = _admin_token()
    service = AssignmentService()
    item_id = _service_work_item(service)
    service.mark_completed(TENANT, item_id, completed_by="inspector-1", completed_at=datetime.now(UTC))

    response = assignment_client.put(
        f"/api/assignments/{item_id}",
        json={"status": "pending"},
        headers=_auth_header(token),
    )
    assert response.status_code == 409
