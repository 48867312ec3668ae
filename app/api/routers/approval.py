from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request, Response, status

from app.api.deps import caller_identity, get_current_claims, get_notification_service, require_perm
from app.api.errors import handle_workflow_error
from app.domain.errors import WorkflowError
from app.domain.models import (
    ApprovalSimulateRequest,
    ApprovalTicketCreate,
    ApprovalTicketRead,
    ApprovalTicketRequestRead,
    ApprovalTicketUpdate,
    ApprovalVerifyRead,
)
from app.domain.permissions import PERM_APPROVAL_OVERRIDE, PERM_APPROVAL_READ, PERM_APPROVAL_WRITE
from app.domain.state_machine import TicketStatus
from app.infra.audit import set_audit_context
from app.services.approval_ticket_service import ApprovalTicketService, build_verify_url
from app.services.notification_service import NotificationService

router = APIRouter()


def get_approval_ticket_service(
    notifications: Annotated[NotificationService, Depends(get_notification_service)],
) -> ApprovalTicketService:
    return ApprovalTicketService(notifications)


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[ApprovalTicketService, Depends(get_approval_ticket_service)]
WorkItemId = Annotated[str, Query(alias="workItemId")]
SiteId = Annotated[str, Query(alias="siteId")]


@router.post(
    "",
    response_model=ApprovalTicketRequestRead,
    dependencies=[Depends(require_perm(PERM_APPROVAL_WRITE))],
)
def request_ticket(
    payload: ApprovalTicketCreate,
    response: Response,
    claims: Claims,
    service: Service,
) -> ApprovalTicketRequestRead:
    try:
        ticket, created = service.request_ticket(claims["tenant_id"], payload, caller_identity(claims))
    except WorkflowError as exc:
        handle_workflow_error(exc)
    if created:
        response.status_code = status.HTTP_201_CREATED
    return ApprovalTicketRequestRead(
        ticket=ApprovalTicketRead.model_validate(ticket),
        verify_url=build_verify_url(ticket),
        created=created,
    )


@router.get(
    "",
    response_model=list[ApprovalTicketRead],
    dependencies=[Depends(require_perm(PERM_APPROVAL_READ))],
)
def list_tickets(
    claims: Claims,
    service: Service,
    work_item_id: Annotated[str | None, Query(alias="workItemId")] = None,
    site_id: Annotated[str | None, Query(alias="siteId")] = None,
    ticket_status: Annotated[TicketStatus | None, Query(alias="status")] = None,
) -> list[ApprovalTicketRead]:
    rows = service.list_tickets(
        claims["tenant_id"],
        work_item_id=work_item_id,
        site_id=site_id,
        status=ticket_status,
    )
    return [ApprovalTicketRead.model_validate(item) for item in rows]


@router.get(
    "/status",
    response_model=ApprovalTicketRead,
    dependencies=[Depends(require_perm(PERM_APPROVAL_READ))],
)
def poll_status(
    work_item_id: WorkItemId,
    site_id: SiteId,
    claims: Claims,
    service: Service,
) -> ApprovalTicketRead:
    try:
        ticket = service.poll_status(claims["tenant_id"], work_item_id, site_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return ApprovalTicketRead.model_validate(ticket)


@router.get("/verify", response_model=ApprovalVerifyRead)
def verify_ticket(
    request: Request,
    token: str,
    work_item_id: WorkItemId,
    site_id: SiteId,
    service: Service,
) -> ApprovalVerifyRead:
    try:
        ticket, already_approved = service.verify(token, work_item_id, site_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    set_audit_context(
        request,
        action="approval.verify",
        resource=f"approval_ticket:{ticket.id}",
        tenant_id=ticket.tenant_id,
        detail={"what": {"already_approved": already_approved}},
    )
    return ApprovalVerifyRead(
        result="already_approved" if already_approved else "approved",
        ticket_id=ticket.id,
        site_name=ticket.site_name,
        approved_at=ticket.approved_at,
    )


@router.post(
    "/simulate",
    response_model=ApprovalTicketRead,
    dependencies=[Depends(require_perm(PERM_APPROVAL_OVERRIDE))],
)
def simulate_approval(
    request: Request,
    payload: ApprovalSimulateRequest,
    claims: Claims,
    service: Service,
) -> ApprovalTicketRead:
    try:
        ticket = service.simulate_approval(
            claims["tenant_id"],
            payload.work_item_id,
            payload.site_id,
            operator_id=claims["sub"],
        )
    except WorkflowError as exc:
        handle_workflow_error(exc)
    set_audit_context(
        request,
        action="approval.simulate",
        resource=f"approval_ticket:{ticket.id}",
        detail={"what": {"approval_method": ticket.approval_method}},
    )
    return ApprovalTicketRead.model_validate(ticket)


@router.get(
    "/{ticket_id}",
    response_model=ApprovalTicketRead,
    dependencies=[Depends(require_perm(PERM_APPROVAL_READ))],
)
def get_ticket(ticket_id: str, claims: Claims, service: Service) -> ApprovalTicketRead:
    try:
        ticket = service.get_ticket(claims["tenant_id"], ticket_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return ApprovalTicketRead.model_validate(ticket)


@router.put(
    "/{ticket_id}",
    response_model=ApprovalTicketRead,
    dependencies=[Depends(require_perm(PERM_APPROVAL_WRITE))],
)
def update_ticket(
    ticket_id: str,
    payload: ApprovalTicketUpdate,
    claims: Claims,
    service: Service,
) -> ApprovalTicketRead:
    try:
        ticket = service.update_metadata(claims["tenant_id"], ticket_id, payload)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return ApprovalTicketRead.model_validate(ticket)
