"""Typed errors raised by the workflow engine.

Every error carries a stable ``kind`` string so that callers (HTTP handlers,
the CLI) can map a rejection to their own status codes without parsing
messages.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for all rejections raised by hrflow."""

    kind = "workflow_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(WorkflowError):
    kind = "validation"


class CyclicDependencyError(ValidationError):
    kind = "cyclic_dependency"


class TemplateNotFoundError(WorkflowError):
    kind = "template_not_found"


class WorkflowNotFoundError(WorkflowError):
    kind = "workflow_not_found"


class StepNotFoundError(WorkflowError):
    kind = "step_not_found"


class ExceptionNotFoundError(WorkflowError):
    kind = "exception_not_found"


class TemplateInUseError(WorkflowError):
    kind = "template_in_use"


class DependencyNotSatisfiedError(WorkflowError):
    kind = "dependency_not_satisfied"


class AlreadyResolvedError(WorkflowError):
    kind = "already_resolved"


class InvalidStatusError(WorkflowError):
    kind = "invalid_status"


class WorkflowCancelledError(WorkflowError):
    kind = "workflow_cancelled"


__all__ = [
    "WorkflowError",
    "ValidationError",
    "CyclicDependencyError",
    "TemplateNotFoundError",
    "WorkflowNotFoundError",
    "StepNotFoundError",
    "ExceptionNotFoundError",
    "TemplateInUseError",
    "DependencyNotSatisfiedError",
    "AlreadyResolvedError",
    "InvalidStatusError",
    "WorkflowCancelledError",
]
