"""Instance engine: materializes workflows and owns step state transitions."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .config import HrflowConfig, load_config
from .contracts import (
    DONE_STATUSES,
    OPEN_WORKFLOW_STATUSES,
    EmployeeWorkflow,
    ExceptionType,
    IntegrationType,
    Severity,
    StageSummary,
    StepStatus,
    StepType,
    TemplateStatus,
    WorkflowDetails,
    WorkflowException,
    WorkflowFilter,
    WorkflowIntegration,
    WorkflowProgress,
    WorkflowStatus,
    WorkflowStep,
    new_id,
    utcnow,
)
from .dispatch import IntegrationDispatcher
from .errors import (
    DependencyNotSatisfiedError,
    InvalidStatusError,
    StepNotFoundError,
    ValidationError,
    WorkflowCancelledError,
    WorkflowNotFoundError,
)
from .exception_manager import ExceptionManager
from .integrations import IntegrationProvider, get_providers
from .persistence import WorkflowRepository, get_repository
from .progress import ProgressReporter, progress_percentage, stage_sequence
from .templates import TemplateStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

StepMap = Dict[str, WorkflowStep]


def unmet_dependencies(step: WorkflowStep, steps: StepMap) -> List[WorkflowStep]:
    """Dependencies of ``step`` that are neither completed nor skipped."""
    return [
        steps[dep_id]
        for dep_id in step.dependencies
        if dep_id in steps and not steps[dep_id].is_done
    ]


def _stage_finished(stage: str, steps: StepMap) -> bool:
    return all(s.is_done for s in steps.values() if s.stage == stage)


class WorkflowEngine:
    """Drives ``EmployeeWorkflow`` instances through their steps.

    Every state mutation for one workflow runs under that workflow's lock.
    Workflows never share a lock, and integration calls are made after the
    lock is released.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        templates: Optional[TemplateStore] = None,
        exceptions: Optional[ExceptionManager] = None,
        providers: Optional[Dict[IntegrationType, IntegrationProvider]] = None,
        config: Optional[HrflowConfig] = None,
        now: Callable[[], Any] = utcnow,
    ) -> None:
        self.repository = repository
        self.config = config or HrflowConfig()
        self.templates = templates or TemplateStore(repository, now=now)
        self.exceptions = exceptions or ExceptionManager(repository, now=now)
        self.reporter = ProgressReporter(repository, now=now)
        self.dispatcher = IntegrationDispatcher(
            self,
            repository,
            providers if providers is not None else get_providers(),
            policies=self.config.retry,
            now=now,
        )
        self._now = now
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Locking

    @asynccontextmanager
    async def _locked(self, workflow_id: str) -> AsyncIterator[None]:
        """Hold the workflow's lock; forget it once the workflow is closed."""
        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = self._locks[workflow_id] = asyncio.Lock()
        try:
            async with lock:
                yield
        finally:
            if not lock.locked() and self._locks.get(workflow_id) is lock:
                workflow = await self.repository.get_workflow(workflow_id)
                closed = workflow is None or workflow.status not in OPEN_WORKFLOW_STATUSES
                if closed and not lock.locked():
                    self._locks.pop(workflow_id, None)

    # ------------------------------------------------------------------
    # Loading helpers

    async def _load_workflow(self, workflow_id: str) -> EmployeeWorkflow:
        workflow = await self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def _load_step(self, step_id: str) -> WorkflowStep:
        step = await self.repository.get_step(step_id)
        if step is None:
            raise StepNotFoundError(f"Step {step_id} not found")
        return step

    async def _load_steps(self, workflow_id: str) -> StepMap:
        return {s.id: s for s in await self.repository.list_steps(workflow_id)}

    @staticmethod
    def _ensure_mutable(workflow: EmployeeWorkflow) -> None:
        if workflow.status == WorkflowStatus.CANCELLED:
            raise WorkflowCancelledError(f"Workflow {workflow.id} is cancelled")
        if workflow.status == WorkflowStatus.COMPLETED:
            raise InvalidStatusError(f"Workflow {workflow.id} is already completed")
        if workflow.status == WorkflowStatus.ON_HOLD:
            raise InvalidStatusError(f"Workflow {workflow.id} is on hold")

    # ------------------------------------------------------------------
    # State helpers (callers hold the workflow lock)

    def _auto_start(self, steps: StepMap) -> List[WorkflowStep]:
        now = self._now()
        started: List[WorkflowStep] = []
        for step in sorted(steps.values(), key=lambda s: s.order):
            if (
                step.auto_trigger
                and step.status == StepStatus.PENDING
                and not unmet_dependencies(step, steps)
            ):
                step.status = StepStatus.IN_PROGRESS
                step.started_at = now
                step.updated_at = now
                started.append(step)
                logger.info(f"Auto-started step '{step.name}' ({step.id})")
        return started

    def _unblock_dependents(self, step: WorkflowStep, steps: StepMap) -> None:
        now = self._now()
        for other in steps.values():
            if (
                step.id in other.dependencies
                and other.status == StepStatus.BLOCKED
                and not unmet_dependencies(other, steps)
            ):
                other.status = StepStatus.PENDING
                other.updated_at = now
                logger.info(f"Step '{other.name}' unblocked by '{step.name}'")

    def _block_dependents(self, failed: WorkflowStep, steps: StepMap) -> List[WorkflowStep]:
        """Block every pending step downstream of ``failed``."""
        now = self._now()
        blocked: List[WorkflowStep] = []
        queue = deque([failed.id])
        while queue:
            source = queue.popleft()
            for other in steps.values():
                if source in other.dependencies and other.status == StepStatus.PENDING:
                    other.status = StepStatus.BLOCKED
                    other.metadata["blocked_by"] = failed.id
                    other.updated_at = now
                    blocked.append(other)
                    queue.append(other.id)
        return blocked

    def _refresh(self, workflow: EmployeeWorkflow, steps: StepMap) -> None:
        """Recompute progress, advance finished stages and detect completion."""
        now = self._now()
        ordered = sorted(steps.values(), key=lambda s: s.order)
        workflow.progress_percentage = progress_percentage(ordered)

        stages = stage_sequence(ordered)
        if stages:
            if workflow.current_stage not in stages:
                workflow.current_stage = stages[0]
            index = stages.index(workflow.current_stage)
            while index < len(stages) - 1 and _stage_finished(stages[index], steps):
                index += 1
            if stages[index] != workflow.current_stage:
                logger.info(
                    f"Workflow {workflow.id} advanced to stage '{stages[index]}'"
                )
                workflow.current_stage = stages[index]

        if (
            ordered
            and workflow.status in OPEN_WORKFLOW_STATUSES
            and all(s.is_done for s in ordered)
        ):
            workflow.status = WorkflowStatus.COMPLETED
            workflow.actual_completion = now
            logger.info(f"Workflow {workflow.id} completed")
        workflow.updated_at = now

    async def _settle(
        self, workflow: EmployeeWorkflow, steps: StepMap, done: WorkflowStep
    ) -> List[WorkflowStep]:
        """Apply the consequences of ``done`` finishing and persist everything.

        Returns the integration steps that were auto-started and need a
        dispatch once the lock is released.
        """
        self._unblock_dependents(done, steps)
        started = self._auto_start(steps)
        self._refresh(workflow, steps)
        await self.repository.save_steps(list(steps.values()))
        await self.repository.save_workflow(workflow)
        return self._needs_dispatch(started)

    def _needs_dispatch(self, started: List[WorkflowStep]) -> List[WorkflowStep]:
        if not self.config.dispatch_on_start:
            return []
        return [s for s in started if s.step_type == StepType.INTEGRATION]

    async def _dispatch_all(self, steps: List[WorkflowStep]) -> None:
        for step in steps:
            try:
                await self.dispatcher.dispatch(step.id, wait=False)
            except (InvalidStatusError, WorkflowCancelledError) as exc:
                # the step moved on between releasing the lock and dispatching
                logger.warning(f"Skipped dispatch for step {step.id}: {exc.message}")

    # ------------------------------------------------------------------
    # Workflow operations

    async def initiate_workflow(
        self,
        employee_id: str,
        template_name_or_id: str,
        initiator_id: Optional[str] = None,
    ) -> WorkflowDetails:
        """Materialize a new workflow instance from a template."""
        if not employee_id or not employee_id.strip():
            raise ValidationError("employee_id is required")
        template = await self.templates.resolve(template_name_or_id)
        if template.status != TemplateStatus.ACTIVE:
            raise InvalidStatusError(
                f"Template {template.name} is {template.status.value}, not active"
            )

        now = self._now()
        definitions = template.ordered_steps()
        step_ids = {d.key: new_id() for d in definitions}
        offsets = [d.due_days for d in definitions if d.due_days is not None]
        expected_days = max(offsets) if offsets else self.config.default_expected_days

        workflow = EmployeeWorkflow(
            employee_id=employee_id.strip(),
            template_id=template.id,
            template_name=template.name,
            template_version=template.version,
            workflow_type=template.workflow_type,
            current_stage=definitions[0].stage if definitions else None,
            started_at=now,
            expected_completion=now + timedelta(days=expected_days),
            created_by=initiator_id,
            created_at=now,
            updated_at=now,
        )
        steps: StepMap = {}
        for definition in definitions:
            step = WorkflowStep(
                id=step_ids[definition.key],
                workflow_id=workflow.id,
                definition_key=definition.key,
                order=definition.order,
                name=definition.name,
                description=definition.description,
                step_type=definition.step_type,
                stage=definition.stage,
                required=definition.required,
                auto_trigger=definition.auto_trigger,
                assigned_role=definition.assigned_role,
                dependencies=[step_ids[key] for key in definition.dependencies],
                integration_type=definition.integration_type,
                integration_config=dict(definition.integration_config),
                due_date=(
                    now + timedelta(days=definition.due_days)
                    if definition.due_days is not None
                    else None
                ),
                created_at=now,
                updated_at=now,
            )
            steps[step.id] = step

        async with self._locked(workflow.id):
            started = self._auto_start(steps)
            await self.repository.save_workflow(workflow)
            await self.repository.save_steps(list(steps.values()))
            to_dispatch = self._needs_dispatch(started)

        logger.info(
            f"Initiated workflow {workflow.id} for employee {workflow.employee_id} "
            f"from template {template.name} ({len(steps)} steps)"
        )
        await self._dispatch_all(to_dispatch)
        return WorkflowDetails(
            workflow=workflow,
            steps=sorted(steps.values(), key=lambda s: s.order),
        )

    async def get_workflow(self, workflow_id: str) -> WorkflowDetails:
        workflow = await self._load_workflow(workflow_id)
        return WorkflowDetails(
            workflow=workflow,
            steps=await self.repository.list_steps(workflow_id),
            integrations=await self.repository.list_integrations(workflow_id=workflow_id),
            exceptions=await self.repository.list_exceptions(workflow_id),
        )

    async def list_workflows(
        self, filters: Optional[WorkflowFilter] = None
    ) -> List[EmployeeWorkflow]:
        filters = filters or WorkflowFilter()
        return [w for w in await self.repository.list_workflows() if filters.matches(w)]

    async def cancel_workflow(
        self, workflow_id: str, actor_id: Optional[str] = None
    ) -> EmployeeWorkflow:
        """Cancel an active or on-hold workflow. Step states are left as they are."""
        async with self._locked(workflow_id):
            workflow = await self._load_workflow(workflow_id)
            if workflow.status == WorkflowStatus.CANCELLED:
                raise WorkflowCancelledError(f"Workflow {workflow_id} is already cancelled")
            if workflow.status == WorkflowStatus.COMPLETED:
                raise InvalidStatusError(f"Workflow {workflow_id} is already completed")
            workflow.status = WorkflowStatus.CANCELLED
            workflow.updated_at = self._now()
            await self.repository.save_workflow(workflow)
        logger.info(f"Workflow {workflow_id} cancelled by {actor_id or 'unknown'}")
        return workflow

    async def hold_workflow(self, workflow_id: str) -> EmployeeWorkflow:
        return await self._set_hold(workflow_id, hold=True)

    async def resume_workflow(self, workflow_id: str) -> EmployeeWorkflow:
        return await self._set_hold(workflow_id, hold=False)

    async def _set_hold(self, workflow_id: str, hold: bool) -> EmployeeWorkflow:
        target = WorkflowStatus.ON_HOLD if hold else WorkflowStatus.ACTIVE
        async with self._locked(workflow_id):
            workflow = await self._load_workflow(workflow_id)
            if workflow.status == WorkflowStatus.CANCELLED:
                raise WorkflowCancelledError(f"Workflow {workflow_id} is cancelled")
            if workflow.status == WorkflowStatus.COMPLETED:
                raise InvalidStatusError(f"Workflow {workflow_id} is already completed")
            if workflow.status == target:
                return workflow
            workflow.status = target
            workflow.updated_at = self._now()
            await self.repository.save_workflow(workflow)
        logger.info(f"Workflow {workflow_id} is now {target.value}")
        return workflow

    # ------------------------------------------------------------------
    # Step operations

    async def start_step(
        self, step_id: str, actor_id: Optional[str] = None
    ) -> WorkflowStep:
        """Move a step to in-progress once its dependencies are satisfied.

        Starting a step that is already in progress is a no-op. A failed step
        may be started again.
        """
        workflow_id = (await self._load_step(step_id)).workflow_id
        to_dispatch: List[WorkflowStep] = []
        async with self._locked(workflow_id):
            workflow = await self._load_workflow(workflow_id)
            self._ensure_mutable(workflow)
            steps = await self._load_steps(workflow_id)
            step = steps[step_id]

            if step.status == StepStatus.IN_PROGRESS:
                return step
            if step.status in DONE_STATUSES:
                raise InvalidStatusError(
                    f"Step '{step.name}' is already {step.status.value}"
                )
            unmet = unmet_dependencies(step, steps)
            if unmet:
                names = ", ".join(s.name for s in unmet)
                raise DependencyNotSatisfiedError(
                    f"Step '{step.name}' is waiting on: {names}"
                )

            now = self._now()
            if step.status == StepStatus.FAILED:
                step.metadata["restarted_by"] = actor_id
            step.status = StepStatus.IN_PROGRESS
            step.started_at = now
            step.assigned_to = step.assigned_to or actor_id
            step.updated_at = now
            workflow.updated_at = now
            await self.repository.save_steps([step])
            await self.repository.save_workflow(workflow)
            to_dispatch = self._needs_dispatch([step])

        logger.info(f"Step '{step.name}' started in workflow {workflow_id}")
        await self._dispatch_all(to_dispatch)
        return step

    async def complete_step(
        self, step_id: str, actor_id: Optional[str] = None, notes: Optional[str] = None
    ) -> WorkflowStep:
        """Complete an in-progress step, or a pending manual step directly.

        Completing an already completed step is a no-op.
        """
        workflow_id = (await self._load_step(step_id)).workflow_id
        async with self._locked(workflow_id):
            workflow = await self._load_workflow(workflow_id)
            self._ensure_mutable(workflow)
            steps = await self._load_steps(workflow_id)
            step = steps[step_id]

            if step.status == StepStatus.COMPLETED:
                return step
            now = self._now()
            if step.status == StepStatus.PENDING and step.step_type == StepType.MANUAL:
                unmet = unmet_dependencies(step, steps)
                if unmet:
                    names = ", ".join(s.name for s in unmet)
                    raise DependencyNotSatisfiedError(
                        f"Step '{step.name}' is waiting on: {names}"
                    )
                step.started_at = now
            elif step.status != StepStatus.IN_PROGRESS:
                raise InvalidStatusError(
                    f"Step '{step.name}' cannot be completed from {step.status.value}"
                )

            step.status = StepStatus.COMPLETED
            step.completed_at = now
            step.completed_by = actor_id
            step.updated_at = now
            if notes:
                step.metadata["completion_notes"] = notes
            to_dispatch = await self._settle(workflow, steps, step)

        logger.info(f"Step '{step.name}' completed by {actor_id or 'unknown'}")
        await self._dispatch_all(to_dispatch)
        return step

    async def skip_step(
        self, step_id: str, actor_id: Optional[str], reason: str
    ) -> WorkflowStep:
        """Skip a step. Skipped steps satisfy dependents like completed ones."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to skip a step")
        workflow_id = (await self._load_step(step_id)).workflow_id
        async with self._locked(workflow_id):
            workflow = await self._load_workflow(workflow_id)
            self._ensure_mutable(workflow)
            steps = await self._load_steps(workflow_id)
            step = steps[step_id]

            if step.status == StepStatus.SKIPPED:
                return step
            if step.status == StepStatus.COMPLETED:
                raise InvalidStatusError(f"Step '{step.name}' is already completed")

            now = self._now()
            step.status = StepStatus.SKIPPED
            step.completed_at = now
            step.updated_at = now
            step.metadata["skip_reason"] = reason.strip()
            step.metadata["skipped_by"] = actor_id
            to_dispatch = await self._settle(workflow, steps, step)

        logger.info(f"Step '{step.name}' skipped by {actor_id or 'unknown'}: {reason}")
        await self._dispatch_all(to_dispatch)
        return step

    async def fail_step(
        self, step_id: str, actor_id: Optional[str], reason: str
    ) -> WorkflowStep:
        """Reject an in-progress step and raise a step failure exception."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to fail a step")
        workflow_id = (await self._load_step(step_id)).workflow_id
        async with self._locked(workflow_id):
            workflow = await self._load_workflow(workflow_id)
            self._ensure_mutable(workflow)
            steps = await self._load_steps(workflow_id)
            step = steps[step_id]

            if step.status == StepStatus.FAILED:
                return step
            if step.status != StepStatus.IN_PROGRESS:
                raise InvalidStatusError(
                    f"Step '{step.name}' cannot fail from {step.status.value}"
                )
            self._mark_failed(step, steps, reason.strip(), actor_id)
            workflow.updated_at = self._now()
            await self.repository.save_steps(list(steps.values()))
            await self.repository.save_workflow(workflow)
            await self.exceptions.raise_exception(
                workflow_id,
                step.id,
                ExceptionType.STEP_FAILURE,
                Severity.MEDIUM,
                title=f"Step '{step.name}' failed",
                description=reason.strip(),
            )
        return step

    def _mark_failed(
        self, step: WorkflowStep, steps: StepMap, reason: Optional[str], actor_id: Optional[str]
    ) -> None:
        step.status = StepStatus.FAILED
        step.updated_at = self._now()
        step.metadata["failure_reason"] = reason
        step.metadata["failed_by"] = actor_id
        blocked = self._block_dependents(step, steps)
        logger.warning(
            f"Step '{step.name}' failed; blocked {len(blocked)} dependent step(s)"
        )

    # ------------------------------------------------------------------
    # Integration results (called by the dispatcher, outside any lock)

    async def apply_integration_success(
        self, integration: WorkflowIntegration
    ) -> Optional[WorkflowStep]:
        to_dispatch: List[WorkflowStep] = []
        async with self._locked(integration.workflow_id):
            workflow = await self.repository.get_workflow(integration.workflow_id)
            if workflow is None or workflow.status == WorkflowStatus.CANCELLED:
                logger.warning(
                    f"Dropping late {integration.integration_type.value} result for "
                    f"cancelled workflow {integration.workflow_id}"
                )
                return None
            steps = await self._load_steps(workflow.id)
            step = steps.get(integration.step_id)
            if step is None or step.status != StepStatus.IN_PROGRESS:
                logger.info(
                    f"Step {integration.step_id} is no longer in progress; "
                    f"ignoring {integration.integration_type.value} result"
                )
                return None

            now = self._now()
            step.status = StepStatus.COMPLETED
            step.completed_at = now
            step.completed_by = SYSTEM_ACTOR
            step.updated_at = now
            step.metadata["integration_id"] = integration.id
            step.metadata["external_id"] = integration.external_id
            to_dispatch = await self._settle(workflow, steps, step)

        await self._dispatch_all(to_dispatch)
        return step

    async def apply_integration_failure(
        self, integration: WorkflowIntegration
    ) -> Optional[WorkflowException]:
        async with self._locked(integration.workflow_id):
            workflow = await self.repository.get_workflow(integration.workflow_id)
            if workflow is None or workflow.status == WorkflowStatus.CANCELLED:
                logger.warning(
                    f"Dropping {integration.integration_type.value} failure for "
                    f"cancelled workflow {integration.workflow_id}"
                )
                return None
            steps = await self._load_steps(workflow.id)
            step = steps.get(integration.step_id)
            if step is not None and step.status == StepStatus.IN_PROGRESS:
                self._mark_failed(step, steps, integration.error_message, SYSTEM_ACTOR)
                step.metadata["integration_id"] = integration.id
                workflow.updated_at = self._now()
                await self.repository.save_steps(list(steps.values()))
                await self.repository.save_workflow(workflow)

            step_name = step.name if step is not None else integration.step_id
            return await self.exceptions.raise_exception(
                workflow.id,
                integration.step_id,
                ExceptionType.INTEGRATION_FAILURE,
                Severity.HIGH,
                title=f"{integration.integration_type.value} failed for step '{step_name}'",
                description=(
                    f"Failed after {integration.retry_count} attempt(s): "
                    f"{integration.error_message}"
                ),
            )

    async def drain(self) -> None:
        """Wait for all background dispatches to finish."""
        await self.dispatcher.drain()

    # ------------------------------------------------------------------
    # Exceptions

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
        async with self._locked(workflow_id):
            return await self.exceptions.raise_exception(
                workflow_id,
                step_id,
                exception_type,
                severity,
                title,
                description=description,
                assigned_to=assigned_to,
            )

    async def resolve_exception(
        self,
        exception_id: str,
        resolver_id: str,
        notes: str = "",
        override: bool = False,
    ) -> WorkflowException:
        """Resolve an exception.

        With ``override`` the steps held back by the exception go back to
        pending: the tied step itself when it is blocked, or every step its
        failure blocked when it is failed. The failed step is left alone; it
        needs an explicit restart or skip. Dependency gating still applies to
        the released steps.
        """
        exception = await self.exceptions.get_exception(exception_id)
        async with self._locked(exception.workflow_id):
            resolved = await self.exceptions.resolve_exception(
                exception_id, resolver_id, notes
            )
            if not override or exception.step_id is None:
                return resolved
            workflow = await self._load_workflow(exception.workflow_id)
            if workflow.status not in OPEN_WORKFLOW_STATUSES:
                return resolved
            steps = await self._load_steps(workflow.id)
            tied = steps.get(exception.step_id)
            if tied is None:
                return resolved
            if tied.status == StepStatus.BLOCKED:
                released = [tied]
            elif tied.status == StepStatus.FAILED:
                released = [
                    s
                    for s in steps.values()
                    if s.status == StepStatus.BLOCKED
                    and s.metadata.get("blocked_by") == tied.id
                ]
            else:
                released = []

            now = self._now()
            for step in released:
                step.status = StepStatus.PENDING
                step.metadata["unblocked_by"] = resolver_id
                step.updated_at = now
                logger.info(f"Step '{step.name}' unblocked by override from {resolver_id}")
            if released:
                await self.repository.save_steps(released)
        return resolved

    # ------------------------------------------------------------------
    # Progress

    async def check_workflow_progress(self, workflow_id: str) -> WorkflowProgress:
        async with self._locked(workflow_id):
            workflow = await self._load_workflow(workflow_id)
            if workflow.status in OPEN_WORKFLOW_STATUSES:
                steps = await self._load_steps(workflow_id)
                before = (workflow.status, workflow.progress_percentage, workflow.current_stage)
                self._refresh(workflow, steps)
                after = (workflow.status, workflow.progress_percentage, workflow.current_stage)
                if before != after:
                    await self.repository.save_workflow(workflow)
        return await self.reporter.workflow_progress(workflow_id)

    async def advance_stage(self, workflow_id: str) -> EmployeeWorkflow:
        """Move to the next stage when the current one is finished."""
        async with self._locked(workflow_id):
            workflow = await self._load_workflow(workflow_id)
            if workflow.status == WorkflowStatus.CANCELLED:
                raise WorkflowCancelledError(f"Workflow {workflow_id} is cancelled")
            steps = await self._load_steps(workflow_id)
            stages = stage_sequence(steps.values())
            if not stages:
                return workflow
            if workflow.current_stage not in stages:
                workflow.current_stage = stages[0]
            index = stages.index(workflow.current_stage)
            if index == len(stages) - 1 or not _stage_finished(stages[index], steps):
                return workflow
            workflow.current_stage = stages[index + 1]
            workflow.updated_at = self._now()
            await self.repository.save_workflow(workflow)
        logger.info(f"Workflow {workflow_id} advanced to stage '{workflow.current_stage}'")
        return workflow

    async def stage_breakdown(self, workflow_id: str) -> List[StageSummary]:
        return await self.reporter.stage_breakdown(workflow_id)


def build_engine(
    config: Optional[HrflowConfig] = None,
    repository: Optional[WorkflowRepository] = None,
    providers: Optional[Dict[IntegrationType, IntegrationProvider]] = None,
) -> WorkflowEngine:
    """Assemble an engine from configuration, defaulting to mock providers."""
    config = config or load_config()
    return WorkflowEngine(
        repository or get_repository(config.database_url, config=config),
        providers=providers,
        config=config,
    )
