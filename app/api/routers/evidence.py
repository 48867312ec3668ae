from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import FileResponse

from app.api.deps import get_current_claims, require_any_perm, require_perm
from app.api.errors import handle_workflow_error
from app.domain.errors import WorkflowError
from app.domain.models import EvidenceRead, EvidenceUpload
from app.domain.permissions import PERM_EVIDENCE_WRITE, PERM_INSPECTION_READ
from app.services.evidence_service import EvidenceService

router = APIRouter()


def get_evidence_service() -> EvidenceService:
    return EvidenceService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[EvidenceService, Depends(get_evidence_service)]


@router.post(
    "",
    response_model=EvidenceRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_EVIDENCE_WRITE))],
)
def upload_evidence(payload: EvidenceUpload, claims: Claims, service: Service) -> EvidenceRead:
    try:
        return service.upload(claims["tenant_id"], payload)
    except WorkflowError as exc:
        handle_workflow_error(exc)


@router.get(
    "/objects/{bucket}/{object_key:path}",
    dependencies=[Depends(require_any_perm(PERM_INSPECTION_READ, PERM_EVIDENCE_WRITE))],
)
def download_evidence(bucket: str, object_key: str, claims: Claims, service: Service) -> FileResponse:
    try:
        path = service.resolve(claims["tenant_id"], bucket, object_key)
    except WorkflowError as exc:
        handle_workflow_error(exc)
    return FileResponse(path=str(path))
