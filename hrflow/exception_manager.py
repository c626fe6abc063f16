"""Exception manager: persisted problems that need human resolution."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from .contracts import (
    ExceptionType,
    ResolutionStatus,
    Severity,
    WorkflowException,
    WorkflowStatus,
    utcnow,
)
from .errors import (
    AlreadyResolvedError,
    ExceptionNotFoundError,
    StepNotFoundError,
    ValidationError,
    WorkflowCancelledError,
    WorkflowNotFoundError,
)
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class ExceptionManager:
    """Raises and resolves ``WorkflowException`` records.

    Exceptions are never deleted. Resolution only changes the exception
    itself; unblocking the tied step is the engine's job.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        now: Callable[[], Any] = utcnow,
    ) -> None:
        self._repository = repository
        self._now = now

    async def raise_exception(
        self,
        workflow_id: str,
        step_id: Optional[str],
        exception_type: ExceptionType | str,
        severity: Severity | str,
        title: str,
        description: str = "",
        assigned_to: Optional[str] = None,
    ) -> WorkflowException:
        if not title or not title.strip():
            raise ValidationError("Exception title is required")
        try:
            exception_type = ExceptionType(exception_type)
            severity = Severity(severity)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        if workflow.status == WorkflowStatus.CANCELLED:
            raise WorkflowCancelledError(f"Workflow {workflow_id} is cancelled")
        if step_id is not None:
            step = await self._repository.get_step(step_id)
            if step is None or step.workflow_id != workflow_id:
                raise StepNotFoundError(
                    f"Step {step_id} not found in workflow {workflow_id}"
                )

        now = self._now()
        exception = WorkflowException(
            workflow_id=workflow_id,
            step_id=step_id,
            exception_type=exception_type,
            severity=severity,
            title=title.strip(),
            description=description,
            assigned_to=assigned_to,
            created_at=now,
            updated_at=now,
        )
        await self._repository.save_exception(exception)
        logger.warning(
            f"Raised {severity.value} exception '{exception.title}' "
            f"for workflow {workflow_id}"
        )
        return exception

    async def resolve_exception(
        self, exception_id: str, resolver_id: str, notes: str = ""
    ) -> WorkflowException:
        exception = await self.get_exception(exception_id)
        if exception.resolution_status == ResolutionStatus.RESOLVED:
            raise AlreadyResolvedError(f"Exception {exception_id} is already resolved")
        workflow = await self._repository.get_workflow(exception.workflow_id)
        if workflow is not None and workflow.status == WorkflowStatus.CANCELLED:
            raise WorkflowCancelledError(f"Workflow {workflow.id} is cancelled")

        now = self._now()
        exception.resolution_status = ResolutionStatus.RESOLVED
        exception.resolved_by = resolver_id
        exception.resolved_at = now
        exception.resolution_notes = notes
        exception.updated_at = now
        await self._repository.save_exception(exception)
        logger.info(f"Exception {exception_id} resolved by {resolver_id}")
        return exception

    async def get_exception(self, exception_id: str) -> WorkflowException:
        exception = await self._repository.get_exception(exception_id)
        if exception is None:
            raise ExceptionNotFoundError(f"Exception {exception_id} not found")
        return exception

    async def list_exceptions(
        self,
        workflow_id: Optional[str] = None,
        status: ResolutionStatus | str | None = None,
    ) -> List[WorkflowException]:
        if status is not None:
            try:
                status = ResolutionStatus(status)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
        exceptions = await self._repository.list_exceptions(workflow_id)
        if status is not None:
            exceptions = [e for e in exceptions if e.resolution_status == status]
        return exceptions
