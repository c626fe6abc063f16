"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from ..contracts import (
    EmployeeWorkflow,
    WorkflowException,
    WorkflowIntegration,
    WorkflowStep,
    WorkflowTemplate,
)
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never hold a reference to stored state.
    """

    def __init__(self) -> None:
        self._templates: Dict[str, WorkflowTemplate] = {}
        self._workflows: Dict[str, EmployeeWorkflow] = {}
        self._steps: Dict[str, WorkflowStep] = {}
        self._integrations: Dict[str, WorkflowIntegration] = {}
        self._exceptions: Dict[str, WorkflowException] = {}

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        self._templates[template.id] = template.model_copy(deep=True)

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    async def find_template_by_name(self, name: str) -> WorkflowTemplate | None:
        for template in self._templates.values():
            if template.name == name:
                return template.model_copy(deep=True)
        return None

    async def list_templates(self) -> list[WorkflowTemplate]:
        return [t.model_copy(deep=True) for t in self._templates.values()]

    async def delete_template(self, template_id: str) -> None:
        self._templates.pop(template_id, None)

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: EmployeeWorkflow) -> None:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> EmployeeWorkflow | None:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def list_workflows(self) -> list[EmployeeWorkflow]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    # ------------------------------------------------------------------
    async def save_steps(self, steps: Sequence[WorkflowStep]) -> None:
        for step in steps:
            self._steps[step.id] = step.model_copy(deep=True)

    async def get_step(self, step_id: str) -> WorkflowStep | None:
        step = self._steps.get(step_id)
        return step.model_copy(deep=True) if step else None

    async def list_steps(self, workflow_id: str) -> list[WorkflowStep]:
        steps = [
            s.model_copy(deep=True)
            for s in self._steps.values()
            if s.workflow_id == workflow_id
        ]
        return sorted(steps, key=lambda s: s.order)

    # ------------------------------------------------------------------
    async def save_integration(self, integration: WorkflowIntegration) -> None:
        self._integrations[integration.id] = integration.model_copy(deep=True)

    async def list_integrations(
        self, workflow_id: Optional[str] = None, step_id: Optional[str] = None
    ) -> list[WorkflowIntegration]:
        return [
            i.model_copy(deep=True)
            for i in self._integrations.values()
            if (workflow_id is None or i.workflow_id == workflow_id)
            and (step_id is None or i.step_id == step_id)
        ]

    # ------------------------------------------------------------------
    async def save_exception(self, exception: WorkflowException) -> None:
        self._exceptions[exception.id] = exception.model_copy(deep=True)

    async def get_exception(self, exception_id: str) -> WorkflowException | None:
        exception = self._exceptions.get(exception_id)
        return exception.model_copy(deep=True) if exception else None

    async def list_exceptions(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowException]:
        return [
            e.model_copy(deep=True)
            for e in self._exceptions.values()
            if workflow_id is None or e.workflow_id == workflow_id
        ]
