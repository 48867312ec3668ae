from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from app.api.deps import get_current_claims, require_perm
from app.api.errors import handle_workflow_error
from app.domain.errors import WorkflowError
from app.domain.models import (
    QuestionDefinitionCreate,
    QuestionDefinitionRead,
    SiteCreate,
    SiteRead,
    StaffMemberCreate,
    StaffMemberRead,
)
from app.domain.permissions import PERM_DIRECTORY_READ, PERM_DIRECTORY_WRITE
from app.services.directory_service import DirectoryService

router = APIRouter()


def get_directory_service() -> DirectoryService:
    return DirectoryService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[DirectoryService, Depends(get_directory_service)]


@router.post(
    "/sites",
    response_model=SiteRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_DIRECTORY_WRITE))],
)
def create_site(payload: SiteCreate, claims: Claims, service: Service) -> SiteRead:
    return SiteRead.model_validate(service.create_site(claims["tenant_id"], payload))


@router.get(
    "/sites",
    response_model=list[SiteRead],
    dependencies=[Depends(require_perm(PERM_DIRECTORY_READ))],
)
def list_sites(claims: Claims, service: Service, category: str | None = None) -> list[SiteRead]:
    return [SiteRead.model_validate(item) for item in service.list_sites(claims["tenant_id"], category=category)]


@router.get(
    "/sites/{site_id}",
    response_model=SiteRead,
    dependencies=[Depends(require_perm(PERM_DIRECTORY_READ))],
)
def get_site(site_id: str, claims: Claims, service: Service) -> SiteRead:
    try:
        row = service.get_site(claims["tenant_id"], site_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return SiteRead.model_validate(row)


@router.post(
    "/staff",
    response_model=StaffMemberRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_DIRECTORY_WRITE))],
)
def create_staff(payload: StaffMemberCreate, claims: Claims, service: Service) -> StaffMemberRead:
    return StaffMemberRead.model_validate(service.create_staff(claims["tenant_id"], payload))


@router.get(
    "/staff",
    response_model=list[StaffMemberRead],
    dependencies=[Depends(require_perm(PERM_DIRECTORY_READ))],
)
def list_staff(
    claims: Claims,
    service: Service,
    role: str | None = None,
    category: str | None = None,
) -> list[StaffMemberRead]:
    rows = service.list_staff(claims["tenant_id"], role=role, category=category)
    return [StaffMemberRead.model_validate(item) for item in rows]


@router.get(
    "/staff/{staff_id}",
    response_model=StaffMemberRead,
    dependencies=[Depends(require_perm(PERM_DIRECTORY_READ))],
)
def get_staff(staff_id: str, claims: Claims, service: Service) -> StaffMemberRead:
    try:
        row = service.get_staff(claims["tenant_id"], staff_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return StaffMemberRead.model_validate(row)


@router.post(
    "/questions",
    response_model=QuestionDefinitionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_DIRECTORY_WRITE))],
)
def create_question(payload: QuestionDefinitionCreate, claims: Claims, service: Service) -> QuestionDefinitionRead:
    try:
        row = service.create_question(claims["tenant_id"], payload)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return QuestionDefinitionRead.model_validate(row)


@router.get(
    "/questions",
    response_model=list[QuestionDefinitionRead],
    dependencies=[Depends(require_perm(PERM_DIRECTORY_READ))],
)
def list_questions(claims: Claims, service: Service, category: str | None = None) -> list[QuestionDefinitionRead]:
    rows = service.list_questions(claims["tenant_id"], category=category)
    return [QuestionDefinitionRead.model_validate(item) for item in rows]
