from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import update
from sqlmodel import Session, col, select

from app.domain.errors import NotFoundError, PreconditionError, ValidationError
from app.domain.models import (
    ApprovalTicket,
    InspectionReport,
    Site,
    StaffMember,
    Tier2Decision,
    WorkItem,
    WorkItemCreate,
    WorkItemUpdate,
    ensure_utc,
    now_utc,
)
from app.domain.state_machine import WorkItemStatus, can_work_item_transition
from app.infra.db import get_engine
from app.infra.events import event_bus

logger = structlog.get_logger(__name__)

COMPLETED_FINAL_STATUS = "completed"


class WorkItemSequence:
    """Lazy view over a filtered work-item query, newest first.

    Each iteration re-runs the query page by page, so the sequence can be
    walked again after the underlying rows change.
    """

    def __init__(
        self,
        tenant_id: str,
        *,
        assignee_id: str | None = None,
        category: str | None = None,
        site_id: str | None = None,
        status: WorkItemStatus | None = None,
        page_size: int = 100,
    ) -> None:
        self.tenant_id = tenant_id
        self.assignee_id = assignee_id
        self.category = category
        self.site_id = site_id
        self.status = status
        self.page_size = page_size

    def _statement(self) -> Any:
        statement = select(WorkItem).where(WorkItem.tenant_id == self.tenant_id)
        if self.assignee_id is not None:
            statement = statement.where(WorkItem.assignee_id == self.assignee_id)
        if self.category is not None:
            statement = statement.where(WorkItem.category == self.category)
        if self.site_id is not None:
            statement = statement.where(WorkItem.site_id == self.site_id)
        if self.status is not None:
            statement = statement.where(WorkItem.status == self.status)
        return statement.order_by(col(WorkItem.created_at).desc(), col(WorkItem.id).desc())

    def __iter__(self) -> Iterator[WorkItem]:
        offset = 0
        while True:
            with Session(get_engine(), expire_on_commit=False) as session:
                rows = list(session.exec(self._statement().offset(offset).limit(self.page_size)).all())
            yield from rows
            if len(rows) < self.page_size:
                return
            offset += self.page_size


class AssignmentService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_work_item(self, session: Session, tenant_id: str, work_item_id: str) -> WorkItem:
        item = session.exec(
            select(WorkItem)
            .where(WorkItem.tenant_id == tenant_id)
            .where(WorkItem.id == work_item_id)
        ).first()
        if item is None:
            raise NotFoundError("work item not found")
        return item

    def _ensure_site(self, session: Session, tenant_id: str, site_id: str) -> Site:
        site = session.exec(select(Site).where(Site.tenant_id == tenant_id).where(Site.id == site_id)).first()
        if site is None:
            raise ValidationError(f"site reference does not resolve: {site_id}")
        return site

    def _ensure_assignee(self, session: Session, tenant_id: str, assignee_id: str) -> StaffMember:
        member = session.exec(
            select(StaffMember)
            .where(StaffMember.tenant_id == tenant_id)
            .where(StaffMember.id == assignee_id)
        ).first()
        if member is None:
            raise ValidationError(f"assignee reference does not resolve: {assignee_id}")
        return member

    @staticmethod
    def _ensure_future_deadline(deadline: datetime, reference: datetime) -> datetime:
        normalized = ensure_utc(deadline)
        if normalized <= reference:
            raise ValidationError("deadline must be in the future")
        return normalized

    def create_work_item(self, tenant_id: str, payload: WorkItemCreate, created_by: str | None = None) -> WorkItem:
        created_at = now_utc()
        deadline = self._ensure_future_deadline(payload.deadline, created_at)
        with self._session() as session:
            self._ensure_site(session, tenant_id, payload.site_id)
            self._ensure_assignee(session, tenant_id, payload.assignee_id)
            item = WorkItem(
                tenant_id=tenant_id,
                site_id=payload.site_id,
                assignee_id=payload.assignee_id,
                category=payload.category,
                deadline=deadline,
                priority=payload.priority,
                instructions=payload.instructions,
                status=WorkItemStatus.PENDING,
                created_by=created_by,
                created_at=created_at,
                updated_at=created_at,
            )
            session.add(item)
            session.commit()
            session.refresh(item)

        logger.info("work_item_created", work_item_id=item.id, site_id=item.site_id, assignee_id=item.assignee_id)
        event_bus.publish_dict(
            "assignment.created",
            tenant_id,
            {"work_item_id": item.id, "site_id": item.site_id, "assignee_id": item.assignee_id},
            actor_id=created_by,
        )
        return item

    def get_work_item(self, tenant_id: str, work_item_id: str) -> WorkItem:
        with self._session() as session:
            return self._get_scoped_work_item(session, tenant_id, work_item_id)

    def iter_work_items(
        self,
        tenant_id: str,
        *,
        assignee_id: str | None = None,
        category: str | None = None,
        site_id: str | None = None,
        status: WorkItemStatus | None = None,
    ) -> WorkItemSequence:
        return WorkItemSequence(
            tenant_id,
            assignee_id=assignee_id,
            category=category,
            site_id=site_id,
            status=status,
        )

    def update_work_item(
        self,
        tenant_id: str,
        work_item_id: str,
        payload: WorkItemUpdate,
        actor_id: str | None = None,
    ) -> WorkItem:
        with self._session() as session:
            item = self._get_scoped_work_item(session, tenant_id, work_item_id)
            if item.status == WorkItemStatus.COMPLETED:
                raise PreconditionError(f"work item is {item.status}; completed items are read-only")
            if payload.status is not None and payload.status != item.status:
                if payload.status == WorkItemStatus.COMPLETED:
                    raise ValidationError("work items are completed only through the review workflow")
                if not can_work_item_transition(item.status, payload.status):
                    raise PreconditionError(f"illegal transition: {item.status} -> {payload.status}")
                item.status = payload.status
            if payload.deadline is not None:
                item.deadline = self._ensure_future_deadline(payload.deadline, now_utc())
            if payload.assignee_id is not None:
                self._ensure_assignee(session, tenant_id, payload.assignee_id)
                item.assignee_id = payload.assignee_id
            if payload.priority is not None:
                item.priority = payload.priority
            if payload.instructions is not None:
                item.instructions = payload.instructions
            item.updated_at = now_utc()
            session.add(item)
            session.commit()
            session.refresh(item)

        event_bus.publish_dict(
            "assignment.updated",
            tenant_id,
            {"work_item_id": item.id, "status": item.status},
            actor_id=actor_id,
        )
        return item

    def delete_work_item(self, tenant_id: str, work_item_id: str, actor_id: str | None = None) -> None:
        with self._session() as session:
            item = self._get_scoped_work_item(session, tenant_id, work_item_id)
            report = session.exec(
                select(InspectionReport.id)
                .where(InspectionReport.tenant_id == tenant_id)
                .where(InspectionReport.work_item_id == work_item_id)
            ).first()
            if report is not None:
                raise PreconditionError("work item is referenced by an inspection report")
            ticket = session.exec(
                select(ApprovalTicket.id)
                .where(ApprovalTicket.tenant_id == tenant_id)
                .where(ApprovalTicket.work_item_id == work_item_id)
            ).first()
            if ticket is not None:
                raise PreconditionError("work item is referenced by an approval ticket")
            session.delete(item)
            session.commit()

        event_bus.publish_dict(
            "assignment.deleted",
            tenant_id,
            {"work_item_id": work_item_id},
            actor_id=actor_id,
        )

    def mark_completed(
        self,
        tenant_id: str,
        work_item_id: str,
        completed_by: str,
        completed_at: datetime,
    ) -> WorkItem:
        with self._session() as session:
            item = self._get_scoped_work_item(session, tenant_id, work_item_id)
            if item.status == WorkItemStatus.COMPLETED:
                return item
            result = session.connection().execute(
                update(WorkItem)
                .where(col(WorkItem.tenant_id) == tenant_id)
                .where(col(WorkItem.id) == work_item_id)
                .where(col(WorkItem.status) != WorkItemStatus.COMPLETED)
                .values(
                    status=WorkItemStatus.COMPLETED,
                    final_status=COMPLETED_FINAL_STATUS,
                    completed_by=completed_by,
                    completed_at=ensure_utc(completed_at),
                    updated_at=now_utc(),
                )
            )
            session.commit()
            session.refresh(item)
            if result.rowcount == 0:
                # A concurrent caller completed it first.
                return item

        logger.info("work_item_completed", work_item_id=item.id, completed_by=completed_by)
        event_bus.publish_dict(
            "assignment.completed",
            tenant_id,
            {"work_item_id": item.id, "completed_by": completed_by},
            actor_id=completed_by,
        )
        return item

    def mark_second_tier_reviewed(
        self,
        tenant_id: str,
        work_item_id: str,
        decision: Tier2Decision,
        reviewed_by: str,
        reviewed_at: datetime,
    ) -> WorkItem:
        with self._session() as session:
            item = self._get_scoped_work_item(session, tenant_id, work_item_id)
            if item.status != WorkItemStatus.COMPLETED:
                raise PreconditionError(f"work item is not completed: {item.status}")
            if item.second_tier_reviewed:
                return item
            session.connection().execute(
                update(WorkItem)
                .where(col(WorkItem.tenant_id) == tenant_id)
                .where(col(WorkItem.id) == work_item_id)
                .where(col(WorkItem.second_tier_reviewed).is_(False))
                .values(
                    second_tier_reviewed=True,
                    second_tier_decision=decision,
                    second_tier_reviewed_by=reviewed_by,
                    second_tier_reviewed_at=ensure_utc(reviewed_at),
                    updated_at=now_utc(),
                )
            )
            session.commit()
            session.refresh(item)

        logger.info("work_item_second_tier_reviewed", work_item_id=item.id, decision=decision)
        return item
