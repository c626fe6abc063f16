"""Read-only progress and dashboard aggregation."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .contracts import (
    DONE_STATUSES,
    OPEN_WORKFLOW_STATUSES,
    DashboardStats,
    EmployeeWorkflow,
    ResolutionStatus,
    Severity,
    StageSummary,
    StepStatus,
    TemplateStatus,
    WorkflowProgress,
    WorkflowStatus,
    WorkflowStep,
    utcnow,
)
from .errors import WorkflowNotFoundError
from .persistence import WorkflowRepository


def progress_percentage(steps: Sequence[WorkflowStep]) -> int:
    """Share of completed or skipped steps, rounded half up to an integer."""
    if not steps:
        return 0
    done = sum(1 for s in steps if s.status in DONE_STATUSES)
    return int(100 * done / len(steps) + 0.5)


def stage_sequence(steps: Iterable[WorkflowStep]) -> List[str]:
    """Distinct stage labels in step-order sequence."""
    stages: List[str] = []
    for step in sorted(steps, key=lambda s: s.order):
        if step.stage not in stages:
            stages.append(step.stage)
    return stages


def is_overdue(step: WorkflowStep, now: datetime) -> bool:
    return (
        step.due_date is not None
        and step.status not in DONE_STATUSES
        and now > step.due_date
    )


def build_progress(
    workflow: EmployeeWorkflow,
    steps: Sequence[WorkflowStep],
    open_exceptions: int,
    now: datetime,
) -> WorkflowProgress:
    counts = Counter(s.status for s in steps)
    end = workflow.actual_completion or now
    expected_days = None
    if workflow.expected_completion is not None:
        expected_days = (workflow.expected_completion - workflow.started_at).days
    days_elapsed = max((end - workflow.started_at).days, 0)
    return WorkflowProgress(
        workflow_id=workflow.id,
        status=workflow.status,
        total_steps=len(steps),
        completed_steps=counts[StepStatus.COMPLETED],
        skipped_steps=counts[StepStatus.SKIPPED],
        in_progress_steps=counts[StepStatus.IN_PROGRESS],
        pending_steps=counts[StepStatus.PENDING],
        blocked_steps=counts[StepStatus.BLOCKED],
        failed_steps=counts[StepStatus.FAILED],
        progress_percentage=progress_percentage(steps),
        current_stage=workflow.current_stage,
        days_elapsed=days_elapsed,
        expected_days=expected_days,
        is_on_track=expected_days is None or days_elapsed <= expected_days,
        open_exceptions=open_exceptions,
        overdue_steps=[s.id for s in steps if is_overdue(s, now)],
    )


class ProgressReporter:
    """Derives progress figures from stored instance state. Never writes."""

    def __init__(
        self,
        repository: WorkflowRepository,
        now: Callable[[], Any] = utcnow,
    ) -> None:
        self._repository = repository
        self._now = now

    async def _workflow(self, workflow_id: str) -> EmployeeWorkflow:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def workflow_progress(
        self, workflow_id: str, now: Optional[datetime] = None
    ) -> WorkflowProgress:
        workflow = await self._workflow(workflow_id)
        steps = await self._repository.list_steps(workflow_id)
        exceptions = await self._repository.list_exceptions(workflow_id)
        open_count = sum(
            1 for e in exceptions if e.resolution_status == ResolutionStatus.OPEN
        )
        return build_progress(workflow, steps, open_count, now or self._now())

    async def stage_breakdown(self, workflow_id: str) -> List[StageSummary]:
        workflow = await self._workflow(workflow_id)
        steps = await self._repository.list_steps(workflow_id)
        summaries: List[StageSummary] = []
        for stage in stage_sequence(steps):
            in_stage = [s for s in steps if s.stage == stage]
            completed = sum(1 for s in in_stage if s.status == StepStatus.COMPLETED)
            skipped = sum(1 for s in in_stage if s.status == StepStatus.SKIPPED)
            summaries.append(
                StageSummary(
                    stage=stage,
                    total=len(in_stage),
                    completed=completed,
                    skipped=skipped,
                    remaining=len(in_stage) - completed - skipped,
                    is_current=stage == workflow.current_stage,
                )
            )
        return summaries

    async def overdue_steps(self, now: Optional[datetime] = None) -> List[WorkflowStep]:
        now = now or self._now()
        overdue: List[WorkflowStep] = []
        for workflow in await self._repository.list_workflows():
            if workflow.status not in OPEN_WORKFLOW_STATUSES:
                continue
            steps = await self._repository.list_steps(workflow.id)
            overdue.extend(s for s in steps if is_overdue(s, now))
        return overdue

    async def exception_backlog(self, workflow_id: Optional[str] = None) -> Dict[str, int]:
        backlog = {severity.value: 0 for severity in Severity}
        for exception in await self._repository.list_exceptions(workflow_id):
            if exception.resolution_status == ResolutionStatus.OPEN:
                backlog[Severity(exception.severity).value] += 1
        return backlog

    async def dashboard(self, now: Optional[datetime] = None) -> DashboardStats:
        now = now or self._now()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        stats = DashboardStats()

        completion_days: List[int] = []
        for workflow in await self._repository.list_workflows():
            if workflow.status == WorkflowStatus.ACTIVE:
                stats.active_workflows += 1
            elif workflow.status == WorkflowStatus.ON_HOLD:
                stats.on_hold_workflows += 1
            elif workflow.status == WorkflowStatus.COMPLETED:
                stats.completed_workflows += 1
                finished = workflow.actual_completion
                if finished is not None and finished >= month_start:
                    completion_days.append((finished - workflow.started_at).days)
            elif workflow.status == WorkflowStatus.CANCELLED:
                stats.cancelled_workflows += 1

            if workflow.status in OPEN_WORKFLOW_STATUSES:
                steps = await self._repository.list_steps(workflow.id)
                if any(is_overdue(s, now) for s in steps):
                    stats.overdue_workflows += 1

        stats.completed_this_month = len(completion_days)
        if completion_days:
            stats.avg_completion_days = sum(completion_days) // len(completion_days)
        stats.active_templates = sum(
            1
            for t in await self._repository.list_templates()
            if t.status == TemplateStatus.ACTIVE
        )
        stats.open_exceptions = await self.exception_backlog()
        return stats
