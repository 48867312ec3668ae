from __future__ import annotations


class WorkflowError(Exception):
    pass


class ValidationError(WorkflowError):
    pass


class NotFoundError(WorkflowError):
    pass


class PreconditionError(WorkflowError):
    pass


class ConflictError(WorkflowError):
    pass


class DependencyError(WorkflowError):
    pass
