from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status

from app.domain.errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    PreconditionError,
    ValidationError,
    WorkflowError,
)

_STATUS_BY_ERROR: tuple[tuple[type[WorkflowError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PreconditionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (DependencyError, status.HTTP_502_BAD_GATEWAY),
)


def handle_workflow_error(exc: WorkflowError) -> NoReturn:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    raise exc
