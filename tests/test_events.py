from __future__ import annotations

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from app.domain.models import EventEnvelope, EventRecord
from app.infra import events
from app.infra.events import EventBus


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="inspection.submitted",
        tenant_id="tenant-a",
        payload={"report_id": "report-1", "flag": "Green"},
    )
    bus.subscribe("inspection.submitted", handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].payload == {"report_id": "report-1", "flag": "Green"}
    assert seen == [event.event_id]


def test_publish_dict_persists_and_fans_out_to_wildcard(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'events.db'}")
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(events, "engine", engine)

    bus = EventBus()
    specific: list[str] = []
    everything: list[str] = []

    def on_approved(event: EventEnvelope) -> None:
        specific.append(event.event_type)

    def on_any(event: EventEnvelope) -> None:
        everything.append(event.event_type)

    bus.subscribe("approval.ticket.approved", on_approved)
    bus.subscribe("*", on_any)

    bus.publish_dict("approval.ticket.requested", "tenant-a", {"ticket_id": "t-1"}, actor_id="inspector-1")
    envelope = bus.publish_dict("approval.ticket.approved", "tenant-a", {"ticket_id": "t-1"})

    bus.unsubscribe("*", on_any)
    bus.publish_dict("inspection.completed", "tenant-a", {"report_id": "r-1"})

    with Session(engine) as session:
        stored = session.exec(select(EventRecord).order_by(EventRecord.ts)).all()

    assert [row.event_type for row in stored] == [
        "approval.ticket.requested",
        "approval.ticket.approved",
        "inspection.completed",
    ]
    assert stored[0].actor_id == "inspector-1"
    assert specific == ["approval.ticket.approved"]
    assert everything == ["approval.ticket.requested", "approval.ticket.approved"]
    assert envelope.payload == {"ticket_id": "t-1"}
