"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from ..contracts import (
    EmployeeWorkflow,
    WorkflowException,
    WorkflowIntegration,
    WorkflowStep,
    WorkflowTemplate,
)


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    ``save_*`` methods upsert by id. Only templates can be deleted; every
    instance-side record is kept for audit.
    """

    async def save_template(self, template: WorkflowTemplate) -> None:
        """Insert or replace a template with its step definitions."""

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        """Retrieve a template by id."""

    async def find_template_by_name(self, name: str) -> WorkflowTemplate | None:
        """Retrieve a template by its unique name."""

    async def list_templates(self) -> list[WorkflowTemplate]:
        """Return all templates."""

    async def delete_template(self, template_id: str) -> None:
        """Remove a template and its step definitions."""

    async def save_workflow(self, workflow: EmployeeWorkflow) -> None:
        """Insert or replace a workflow instance."""

    async def get_workflow(self, workflow_id: str) -> EmployeeWorkflow | None:
        """Retrieve a workflow instance by id."""

    async def list_workflows(self) -> list[EmployeeWorkflow]:
        """Return all workflow instances."""

    async def save_steps(self, steps: Sequence[WorkflowStep]) -> None:
        """Insert or replace instance steps."""

    async def get_step(self, step_id: str) -> WorkflowStep | None:
        """Retrieve an instance step by id."""

    async def list_steps(self, workflow_id: str) -> list[WorkflowStep]:
        """Return the steps of a workflow ordered by step order."""

    async def save_integration(self, integration: WorkflowIntegration) -> None:
        """Insert or replace an integration record."""

    async def list_integrations(
        self, workflow_id: Optional[str] = None, step_id: Optional[str] = None
    ) -> list[WorkflowIntegration]:
        """Return integration records, optionally filtered."""

    async def save_exception(self, exception: WorkflowException) -> None:
        """Insert or replace an exception record."""

    async def get_exception(self, exception_id: str) -> WorkflowException | None:
        """Retrieve an exception by id."""

    async def list_exceptions(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowException]:
        """Return exception records, optionally for one workflow."""
