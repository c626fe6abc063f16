"""Integration dispatcher: bounded, timer-based retry of provider calls."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Set

if TYPE_CHECKING:
    from .engine import WorkflowEngine

from .contracts import (
    IntegrationStatus,
    IntegrationType,
    StepStatus,
    WorkflowIntegration,
    WorkflowStatus,
    utcnow,
)
from .errors import (
    InvalidStatusError,
    StepNotFoundError,
    ValidationError,
    WorkflowCancelledError,
)
from .integrations import IntegrationProvider, IntegrationResult
from .persistence import WorkflowRepository
from .utils.retry import RetryPolicy, schedule_retry

logger = logging.getLogger(__name__)


class IntegrationDispatcher:
    """Runs the side effect behind integration-typed steps.

    Provider calls happen outside the per-workflow lock. Only the final
    outcome is handed back to the engine, which re-acquires the lock to
    apply it.
    """

    def __init__(
        self,
        engine: "WorkflowEngine",
        repository: WorkflowRepository,
        providers: Dict[IntegrationType, IntegrationProvider],
        policies: Optional[Dict[IntegrationType, RetryPolicy]] = None,
        now: Callable[[], Any] = utcnow,
    ) -> None:
        self._engine = engine
        self._repository = repository
        self._providers = providers
        self._policies = policies or {}
        self._now = now
        self._tasks: Set[asyncio.Task] = set()

    def policy_for(self, integration_type: IntegrationType) -> RetryPolicy:
        return self._policies.get(IntegrationType(integration_type), RetryPolicy())

    async def dispatch(
        self,
        step_id: str,
        integration_type: IntegrationType | str | None = None,
        payload: Optional[Dict[str, Any]] = None,
        *,
        wait: bool = True,
    ) -> WorkflowIntegration:
        """Create an integration record for ``step_id`` and run its attempts.

        With ``wait`` the whole attempt group is awaited and the final record
        returned. Otherwise the attempts run as a background task and the
        freshly created record is returned.
        """
        step = await self._repository.get_step(step_id)
        if step is None:
            raise StepNotFoundError(f"Step {step_id} not found")
        workflow = await self._repository.get_workflow(step.workflow_id)
        if workflow is not None and workflow.status == WorkflowStatus.CANCELLED:
            raise WorkflowCancelledError(f"Workflow {step.workflow_id} is cancelled")
        if step.status != StepStatus.IN_PROGRESS:
            raise InvalidStatusError(
                f"Step {step_id} must be in-progress to dispatch, not {step.status.value}"
            )

        try:
            integration_type = IntegrationType(integration_type or step.integration_type)
        except ValueError as exc:
            raise ValidationError(f"Step {step_id} has no valid integration type") from exc
        provider = self._providers.get(integration_type)
        if provider is None:
            raise ValidationError(f"No provider configured for {integration_type.value}")
        policy = self.policy_for(integration_type)

        now = self._now()
        integration = WorkflowIntegration(
            workflow_id=step.workflow_id,
            step_id=step.id,
            integration_type=integration_type,
            request_payload=dict(payload if payload is not None else step.integration_config),
            max_retries=policy.max_retries,
            created_at=now,
            updated_at=now,
        )
        await self._repository.save_integration(integration)
        logger.info(
            f"Dispatching {integration_type.value} for step {step.id} "
            f"(max {policy.max_retries} attempts)"
        )

        if wait:
            return await self._run(integration, provider, policy)

        task = asyncio.create_task(
            self._run(integration.model_copy(deep=True), provider, policy)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return integration

    async def drain(self) -> None:
        """Wait for every scheduled attempt group, including ones they spawn."""
        while self._tasks:
            pending = list(self._tasks)
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.error(f"Background dispatch failed: {result!r}")

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Attempt loop

    async def _attempt(
        self,
        provider: IntegrationProvider,
        integration: WorkflowIntegration,
        policy: RetryPolicy,
    ) -> IntegrationResult:
        try:
            return await asyncio.wait_for(
                provider.invoke(integration.step_id, dict(integration.request_payload)),
                timeout=policy.timeout,
            )
        except asyncio.TimeoutError:
            return IntegrationResult(
                success=False, error=f"timed out after {policy.timeout}s"
            )
        except Exception as exc:  # provider errors count as failed attempts
            return IntegrationResult(
                success=False, error=str(exc) or exc.__class__.__name__
            )

    async def _is_cancelled(self, workflow_id: str) -> bool:
        workflow = await self._repository.get_workflow(workflow_id)
        return workflow is None or workflow.status == WorkflowStatus.CANCELLED

    async def _run(
        self,
        integration: WorkflowIntegration,
        provider: IntegrationProvider,
        policy: RetryPolicy,
    ) -> WorkflowIntegration:
        while True:
            if await self._is_cancelled(integration.workflow_id):
                integration.status = IntegrationStatus.FAILED
                integration.error_message = "workflow cancelled"
                integration.updated_at = self._now()
                await self._repository.save_integration(integration)
                logger.warning(
                    f"Workflow {integration.workflow_id} cancelled; "
                    f"abandoning {integration.integration_type.value} dispatch"
                )
                return integration

            result = await self._attempt(provider, integration, policy)
            now = self._now()
            integration.last_attempt_at = now
            integration.updated_at = now

            if result.success:
                integration.status = IntegrationStatus.SUCCEEDED
                integration.external_id = result.external_id
                integration.response_payload = dict(result.response)
                integration.error_message = None
                await self._repository.save_integration(integration)
                logger.info(
                    f"{integration.integration_type.value} succeeded for step "
                    f"{integration.step_id} ({integration.external_id})"
                )
                await self._engine.apply_integration_success(integration)
                return integration

            integration.retry_count += 1
            integration.error_message = result.error
            integration.response_payload = dict(result.response)
            if integration.retry_count >= integration.max_retries:
                integration.status = IntegrationStatus.FAILED
                await self._repository.save_integration(integration)
                logger.warning(
                    f"{integration.integration_type.value} failed for step "
                    f"{integration.step_id} after {integration.retry_count} attempts: "
                    f"{result.error}"
                )
                await self._engine.apply_integration_failure(integration)
                return integration

            await self._repository.save_integration(integration)
            delay = policy.delay_for(integration.retry_count - 1)
            logger.debug(
                f"Attempt {integration.retry_count} of {integration.max_retries} for "
                f"step {integration.step_id} failed; retrying in {delay:.1f}s"
            )
            await schedule_retry(policy, integration.retry_count - 1)
