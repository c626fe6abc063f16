"""Shared fixtures for hrflow tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from hrflow.config import HrflowConfig
from hrflow.contracts import IntegrationType, StepDefinition
from hrflow.engine import WorkflowEngine
from hrflow.integrations import IntegrationProvider, IntegrationResult, get_providers
from hrflow.persistence import InMemoryWorkflowRepository
from hrflow.utils.retry import RetryPolicy


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class ScriptedProvider(IntegrationProvider):
    """Provider that plays back a list of outcomes, one per call.

    ``True`` succeeds, ``False`` fails, an exception instance is raised. The
    last outcome repeats once the script runs out.
    """

    def __init__(
        self,
        outcomes: List[Any],
        integration_type: IntegrationType = IntegrationType.BACKGROUND_CHECK,
        delay: float = 0.0,
    ) -> None:
        self.outcomes = list(outcomes)
        self.integration_type = integration_type
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def invoke(self, step_id: str, payload: Dict[str, Any]) -> IntegrationResult:
        index = min(len(self.calls), len(self.outcomes) - 1)
        self.calls.append({"step_id": step_id, "payload": payload})
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        if outcome:
            return IntegrationResult(
                success=True,
                external_id=f"ext-{len(self.calls)}",
                response={"attempt": len(self.calls)},
            )
        return IntegrationResult(success=False, error=f"attempt {len(self.calls)} failed")


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def fast_config():
    """Configuration with zero backoff so retry tests run instantly."""
    return HrflowConfig(
        retry={
            t: RetryPolicy(max_retries=3, base_delay=0, max_delay=0, timeout=0.5)
            for t in IntegrationType
        }
    )


@pytest.fixture
def make_engine(repo, clock, fast_config):
    def factory(
        providers: Optional[Dict[IntegrationType, IntegrationProvider]] = None,
        **config_overrides: Any,
    ) -> WorkflowEngine:
        config = fast_config.model_copy(update=config_overrides)
        return WorkflowEngine(
            repo,
            providers=get_providers(providers),
            config=config,
            now=clock,
        )

    return factory


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def onboarding_steps():
    """send-offer -> sign-offer -> background-check."""
    return [
        StepDefinition(key="send-offer", name="Send Offer", stage="pre-boarding", due_days=2),
        StepDefinition(
            key="sign-offer",
            name="Sign Offer",
            stage="pre-boarding",
            dependencies=["send-offer"],
            due_days=5,
        ),
        StepDefinition(
            key="background-check",
            name="Background Check",
            step_type="integration",
            integration_type="background_check",
            integration_config={"candidate": "emp-1"},
            stage="day-1",
            dependencies=["sign-offer"],
            due_days=10,
        ),
    ]
