from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse

from app.adapters.base import DocumentRenderer
from app.adapters.report_renderer import HtmlReportRenderer
from app.api.deps import caller_identity, get_current_claims, get_notification_service, require_any_perm, require_perm
from app.api.errors import handle_workflow_error
from app.domain.errors import WorkflowError
from app.domain.models import (
    AdminResolution,
    AdminResolveRequest,
    AnalysisFlag,
    InspectionDecisionRequest,
    InspectionReportRead,
    InspectionSubmit,
    ReconcileRead,
    ReviewAction,
    ReviewRouting,
)
from app.domain.permissions import (
    PERM_INSPECTION_ADMIN,
    PERM_INSPECTION_READ,
    PERM_INSPECTION_SUBMIT,
    PERM_REVIEW_TIER1,
    PERM_REVIEW_TIER2,
    has_permission,
)
from app.domain.state_machine import ReviewState
from app.infra.audit import set_audit_context
from app.services.inspection_review_service import InspectionReviewService
from app.services.notification_service import NotificationService

router = APIRouter()

_ACTION_PERMISSIONS = {
    ReviewAction.TIER1_DECISION: PERM_REVIEW_TIER1,
    ReviewAction.RESCHEDULE_REQUEST: PERM_REVIEW_TIER1,
    ReviewAction.TIER2_DECISION: PERM_REVIEW_TIER2,
}


def get_report_renderer() -> DocumentRenderer:
    return HtmlReportRenderer()


def get_inspection_review_service(
    notifications: Annotated[NotificationService, Depends(get_notification_service)],
    renderer: Annotated[DocumentRenderer, Depends(get_report_renderer)],
) -> InspectionReviewService:
    return InspectionReviewService(notifications=notifications, renderer=renderer)


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[InspectionReviewService, Depends(get_inspection_review_service)]


@router.post(
    "",
    response_model=InspectionReportRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_INSPECTION_SUBMIT))],
)
def submit_inspection(payload: InspectionSubmit, claims: Claims, service: Service) -> InspectionReportRead:
    try:
        row = service.submit(claims["tenant_id"], payload, caller_identity(claims))
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return InspectionReportRead.model_validate(row)


@router.get(
    "",
    response_model=list[InspectionReportRead],
    dependencies=[Depends(require_perm(PERM_INSPECTION_READ))],
)
def list_inspections(
    claims: Claims,
    service: Service,
    submitter: str | None = None,
    category: str | None = None,
    site: str | None = None,
    work_item_id: Annotated[str | None, Query(alias="workItemId")] = None,
    routing: ReviewRouting | None = None,
    review_state: ReviewState | None = None,
    flag: AnalysisFlag | None = None,
) -> list[InspectionReportRead]:
    rows = service.list_reports(
        claims["tenant_id"],
        submitter_id=submitter,
        category=category,
        site_id=site,
        work_item_id=work_item_id,
        routing=routing,
        review_state=review_state,
        flag=flag,
    )
    return [InspectionReportRead.model_validate(item) for item in rows]


@router.post(
    "/reconcile",
    response_model=ReconcileRead,
    dependencies=[Depends(require_perm(PERM_INSPECTION_ADMIN))],
)
def reconcile_work_items(claims: Claims, service: Service) -> ReconcileRead:
    return service.reconcile_work_items(claims["tenant_id"])


@router.get(
    "/{report_id}",
    response_model=InspectionReportRead,
    dependencies=[Depends(require_perm(PERM_INSPECTION_READ))],
)
def get_inspection(report_id: str, claims: Claims, service: Service) -> InspectionReportRead:
    try:
        row = service.get_report(claims["tenant_id"], report_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return InspectionReportRead.model_validate(row)


@router.put(
    "/{report_id}",
    response_model=InspectionReportRead,
    dependencies=[Depends(require_any_perm(PERM_REVIEW_TIER1, PERM_REVIEW_TIER2))],
)
def decide_inspection(
    request: Request,
    report_id: str,
    payload: InspectionDecisionRequest,
    background_tasks: BackgroundTasks,
    claims: Claims,
    service: Service,
) -> InspectionReportRead:
    permission = _ACTION_PERMISSIONS[payload.action]
    if not has_permission(claims, permission):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")
    set_audit_context(
        request,
        action=f"inspection.{payload.action}",
        resource=f"inspection_report:{report_id}",
    )
    try:
        row = service.decide(claims["tenant_id"], report_id, payload, caller_identity(claims))
    except WorkflowError as exc:
        handle_workflow_error(exc)
    if payload.action == ReviewAction.TIER2_DECISION:
        background_tasks.add_task(service.render_report, claims["tenant_id"], row.id)
    return InspectionReportRead.model_validate(row)


@router.post(
    "/{report_id}/admin-resolve",
    response_model=InspectionReportRead,
    dependencies=[Depends(require_perm(PERM_INSPECTION_ADMIN))],
)
def admin_resolve(
    report_id: str,
    payload: AdminResolveRequest,
    background_tasks: BackgroundTasks,
    claims: Claims,
    service: Service,
) -> InspectionReportRead:
    try:
        row = service.admin_resolve(claims["tenant_id"], report_id, payload, caller_identity(claims))
    except WorkflowError as exc:
        handle_workflow_error(exc)
    if payload.action == AdminResolution.CLOSE:
        background_tasks.add_task(service.render_report, claims["tenant_id"], row.id)
    return InspectionReportRead.model_validate(row)


@router.get(
    "/{report_id}/report",
    dependencies=[Depends(require_perm(PERM_INSPECTION_READ))],
)
def download_report(report_id: str, claims: Claims, service: Service) -> FileResponse:
    try:
        path = service.get_report_artifact(claims["tenant_id"], report_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return FileResponse(path=str(path), media_type="text/html", filename=path.name)
