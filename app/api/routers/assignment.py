from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_current_claims, require_perm
from app.api.errors import handle_workflow_error
from app.domain.errors import WorkflowError
from app.domain.models import WorkItemCreate, WorkItemRead, WorkItemUpdate
from app.domain.permissions import PERM_ASSIGNMENT_READ, PERM_ASSIGNMENT_WRITE
from app.domain.state_machine import WorkItemStatus
from app.services.assignment_service import AssignmentService

router = APIRouter()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post(
    "",
    response_model=WorkItemRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_WRITE))],
)
def create_work_item(payload: WorkItemCreate, claims: Claims, service: Service) -> WorkItemRead:
    try:
        row = service.create_work_item(claims["tenant_id"], payload, created_by=claims["sub"])
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return WorkItemRead.model_validate(row)


@router.get(
    "",
    response_model=list[WorkItemRead],
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_READ))],
)
def list_work_items(
    claims: Claims,
    service: Service,
    assignee: str | None = None,
    category: str | None = None,
    site: str | None = None,
    item_status: Annotated[WorkItemStatus | None, Query(alias="status")] = None,
) -> list[WorkItemRead]:
    rows = service.iter_work_items(
        claims["tenant_id"],
        assignee_id=assignee,
        category=category,
        site_id=site,
        status=item_status,
    )
    return [WorkItemRead.model_validate(item) for item in rows]


@router.get(
    "/{work_item_id}",
    response_model=WorkItemRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_READ))],
)
def get_work_item(work_item_id: str, claims: Claims, service: Service) -> WorkItemRead:
    try:
        row = service.get_work_item(claims["tenant_id"], work_item_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return WorkItemRead.model_validate(row)


@router.put(
    "/{work_item_id}",
    response_model=WorkItemRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_WRITE))],
)
def update_work_item(
    work_item_id: str,
    payload: WorkItemUpdate,
    claims: Claims,
    service: Service,
) -> WorkItemRead:
    try:
        row = service.update_work_item(claims["tenant_id"], work_item_id, payload, actor_id=claims["sub"])
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return WorkItemRead.model_validate(row)


@router.delete(
    "/{work_item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_WRITE))],
)
def delete_work_item(work_item_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_work_item(claims["tenant_id"], work_item_id, actor_id=claims["sub"])
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
