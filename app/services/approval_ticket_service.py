from __future__ import annotations

import os
import secrets
from html import escape
from typing import Any
from urllib.parse import urlencode

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.adapters.base import NotificationMessage
from app.domain.errors import NotFoundError, ValidationError
from app.domain.models import (
    ApprovalMethod,
    ApprovalTicket,
    ApprovalTicketCreate,
    ApprovalTicketUpdate,
    CallerIdentity,
    Site,
    WorkItem,
    now_utc,
)
from app.domain.state_machine import TicketStatus, can_ticket_transition
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.services.notification_service import NotificationService

APPROVAL_VERIFY_BASE_URL = os.getenv("APPROVAL_VERIFY_BASE_URL", "http://localhost:8000/api/approvals")
APPROVAL_TOKEN_BYTES = int(os.getenv("APPROVAL_TOKEN_BYTES", "32"))

APPROVED_BY_LINK = "approver-link"
APPROVED_BY_SIMULATION_PREFIX = "manual-simulation:"

logger = structlog.get_logger(__name__)


def build_verify_url(ticket: ApprovalTicket, base_url: str = APPROVAL_VERIFY_BASE_URL) -> str:
    query = urlencode(
        {
            "token": ticket.approval_token,
            "workItemId": ticket.work_item_id,
            "siteId": ticket.site_id,
        }
    )
    return f"{base_url.rstrip('/')}/verify?{query}"


def _approval_message(ticket: ApprovalTicket, verify_url: str) -> NotificationMessage:
    site_name = ticket.site_name or ticket.site_id
    greeting = ticket.approver_name or "Principal"
    requester = ticket.requester_name or ticket.requester_id
    requester_role = ticket.requester_role or "inspector"
    subject = f"Inspection approval requested: {site_name}"
    text_body = (
        f"Dear {greeting},\n\n"
        f"{requester} ({requester_role}) is requesting your approval "
        f"to submit an inspection report for {site_name}.\n\n"
        f"Approve here: {verify_url}\n"
    )
    html_body = (
        f"<p>Dear {escape(greeting)},</p>"
        f"<p>{escape(requester)} ({escape(requester_role)}) is requesting your approval "
        f"to submit an inspection report for <strong>{escape(site_name)}</strong>.</p>"
        f"<p><a href='{escape(verify_url)}'>Approve inspection</a></p>"
    )
    return NotificationMessage(
        recipient=ticket.approver_email or "",
        recipient_name=ticket.approver_name,
        subject=subject,
        html_body=html_body,
        text_body=text_body,
    )


class ApprovalTicketService:
    def __init__(self, notifications: NotificationService | None = None) -> None:
        self._notifications = notifications or NotificationService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _find_ticket(
        self,
        session: Session,
        tenant_id: str,
        work_item_id: str,
        site_id: str,
    ) -> ApprovalTicket | None:
        return session.exec(
            select(ApprovalTicket)
            .where(ApprovalTicket.tenant_id == tenant_id)
            .where(ApprovalTicket.work_item_id == work_item_id)
            .where(ApprovalTicket.site_id == site_id)
        ).first()

    def _get_pair_ticket(self, session: Session, tenant_id: str, work_item_id: str, site_id: str) -> ApprovalTicket:
        ticket = self._find_ticket(session, tenant_id, work_item_id, site_id)
        if ticket is None:
            raise NotFoundError("approval ticket not found")
        return ticket

    def _get_scoped_ticket(self, session: Session, tenant_id: str, ticket_id: str) -> ApprovalTicket:
        ticket = session.exec(
            select(ApprovalTicket)
            .where(ApprovalTicket.tenant_id == tenant_id)
            .where(ApprovalTicket.id == ticket_id)
        ).first()
        if ticket is None:
            raise NotFoundError("approval ticket not found")
        return ticket

    def _approve(
        self,
        session: Session,
        ticket: ApprovalTicket,
        *,
        method: ApprovalMethod,
        approved_by: str,
    ) -> bool:
        if not can_ticket_transition(ticket.status, TicketStatus.APPROVED):
            return False
        approved_at = now_utc()
        result = session.connection().execute(
            update(ApprovalTicket)
            .where(col(ApprovalTicket.id) == ticket.id)
            .where(col(ApprovalTicket.approved).is_(False))
            .values(
                approved=True,
                status=TicketStatus.APPROVED,
                approved_at=approved_at,
                approved_by=approved_by,
                approval_method=method,
                updated_at=approved_at,
            )
        )
        session.commit()
        session.refresh(ticket)
        return result.rowcount > 0

    def is_approved(self, session: Session, tenant_id: str, work_item_id: str, site_id: str) -> bool:
        ticket = self._find_ticket(session, tenant_id, work_item_id, site_id)
        return ticket is not None and ticket.approved

    def request_ticket(
        self,
        tenant_id: str,
        payload: ApprovalTicketCreate,
        requester: CallerIdentity,
    ) -> tuple[ApprovalTicket, bool]:
        with self._session() as session:
            existing = self._find_ticket(session, tenant_id, payload.work_item_id, payload.site_id)
            if existing is not None:
                return existing, False

            work_item = session.exec(
                select(WorkItem)
                .where(WorkItem.tenant_id == tenant_id)
                .where(WorkItem.id == payload.work_item_id)
            ).first()
            if work_item is None:
                raise NotFoundError("work item not found")
            if work_item.site_id != payload.site_id:
                raise ValidationError("site does not match the work item")
            site = session.exec(
                select(Site).where(Site.tenant_id == tenant_id).where(Site.id == payload.site_id)
            ).first()
            if site is None:
                raise NotFoundError("site not found")

            ticket = ApprovalTicket(
                tenant_id=tenant_id,
                work_item_id=payload.work_item_id,
                site_id=payload.site_id,
                site_name=payload.site_name or site.name,
                approver_name=payload.approver_name or site.principal_name,
                approver_email=payload.approver_email or site.principal_email,
                requester_id=requester.id,
                requester_name=requester.name,
                requester_role=requester.role,
                approval_token=secrets.token_urlsafe(APPROVAL_TOKEN_BYTES),
                status=TicketStatus.PENDING,
            )
            session.add(ticket)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                # Lost the insert race; the winner's ticket is the ticket.
                existing = self._find_ticket(session, tenant_id, payload.work_item_id, payload.site_id)
                if existing is None:
                    raise
                return existing, False
            session.refresh(ticket)

        logger.info("approval_ticket_requested", ticket_id=ticket.id, work_item_id=ticket.work_item_id)
        event_bus.publish_dict(
            "approval.ticket.requested",
            tenant_id,
            {"ticket_id": ticket.id, "work_item_id": ticket.work_item_id, "site_id": ticket.site_id},
            actor_id=requester.id,
        )
        ticket = self._send_approval_request(tenant_id, ticket)
        return ticket, True

    def _send_approval_request(self, tenant_id: str, ticket: ApprovalTicket) -> ApprovalTicket:
        if not ticket.approver_email:
            logger.warning("approval_ticket_without_approver_email", ticket_id=ticket.id)
            return ticket
        result = self._notifications.notify(
            tenant_id,
            _approval_message(ticket, build_verify_url(ticket)),
            related_type="approval_ticket",
            related_id=ticket.id,
        )
        response: dict[str, Any] = {"ok": result.ok, "detail": result.detail, **result.provider_response}
        with self._session() as session:
            row = self._get_scoped_ticket(session, tenant_id, ticket.id)
            row.email_sent = result.ok
            row.email_sent_at = now_utc() if result.ok else None
            row.email_response = response
            row.updated_at = now_utc()
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def verify(self, token: str, work_item_id: str, site_id: str) -> tuple[ApprovalTicket, bool]:
        """Approve the ticket matching the token triple.

        Returns the ticket and whether it was already approved before this
        call. Safe to repeat: a second click reports ``already approved`` and
        leaves ``approved_at`` untouched.
        """
        with self._session() as session:
            ticket = session.exec(
                select(ApprovalTicket)
                .where(ApprovalTicket.approval_token == token)
                .where(ApprovalTicket.work_item_id == work_item_id)
                .where(ApprovalTicket.site_id == site_id)
            ).first()
            if ticket is None:
                raise NotFoundError("invalid or expired approval link")
            if ticket.approved:
                return ticket, True
            changed = self._approve(
                session,
                ticket,
                method=ApprovalMethod.LINK_CLICK,
                approved_by=APPROVED_BY_LINK,
            )
            if not changed:
                return ticket, True

        logger.info("approval_ticket_approved", ticket_id=ticket.id, method=ApprovalMethod.LINK_CLICK)
        event_bus.publish_dict(
            "approval.ticket.approved",
            ticket.tenant_id,
            {"ticket_id": ticket.id, "work_item_id": ticket.work_item_id, "method": ApprovalMethod.LINK_CLICK},
        )
        return ticket, False

    def poll_status(self, tenant_id: str, work_item_id: str, site_id: str) -> ApprovalTicket:
        with self._session() as session:
            return self._get_pair_ticket(session, tenant_id, work_item_id, site_id)

    def simulate_approval(
        self,
        tenant_id: str,
        work_item_id: str,
        site_id: str,
        operator_id: str,
    ) -> ApprovalTicket:
        with self._session() as session:
            ticket = self._get_pair_ticket(session, tenant_id, work_item_id, site_id)
            if ticket.approved:
                return ticket
            changed = self._approve(
                session,
                ticket,
                method=ApprovalMethod.MANUAL_SIMULATION,
                approved_by=f"{APPROVED_BY_SIMULATION_PREFIX}{operator_id}",
            )
            if not changed:
                return ticket

        logger.warning("approval_ticket_force_approved", ticket_id=ticket.id, operator_id=operator_id)
        event_bus.publish_dict(
            "approval.ticket.approved",
            tenant_id,
            {"ticket_id": ticket.id, "work_item_id": ticket.work_item_id, "method": ApprovalMethod.MANUAL_SIMULATION},
            actor_id=operator_id,
        )
        return ticket

    def update_metadata(self, tenant_id: str, ticket_id: str, payload: ApprovalTicketUpdate) -> ApprovalTicket:
        changes = payload.model_dump(exclude_unset=True)
        with self._session() as session:
            ticket = self._get_scoped_ticket(session, tenant_id, ticket_id)
            for field_name, value in changes.items():
                # email_response is a non-null JSON column.
                if field_name == "email_response" and value is None:
                    continue
                setattr(ticket, field_name, value)
            ticket.updated_at = now_utc()
            session.add(ticket)
            session.commit()
            session.refresh(ticket)
            return ticket

    def list_tickets(
        self,
        tenant_id: str,
        work_item_id: str | None = None,
        site_id: str | None = None,
        status: TicketStatus | None = None,
    ) -> list[ApprovalTicket]:
        with self._session() as session:
            statement = select(ApprovalTicket).where(ApprovalTicket.tenant_id == tenant_id)
            if work_item_id is not None:
                statement = statement.where(ApprovalTicket.work_item_id == work_item_id)
            if site_id is not None:
                statement = statement.where(ApprovalTicket.site_id == site_id)
            if status is not None:
                statement = statement.where(ApprovalTicket.status == status)
            return list(session.exec(statement.order_by(col(ApprovalTicket.requested_at).desc())).all())

    def get_ticket(self, tenant_id: str, ticket_id: str) -> ApprovalTicket:
        with self._session() as session:
            return self._get_scoped_ticket(session, tenant_id, ticket_id)
