"""Base interface for external integration providers."""

from __future__ import annotations

import abc
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..contracts import IntegrationType


class IntegrationResult(BaseModel):
    """Outcome of one provider call.

    The engine only interprets ``success`` and ``external_id``; ``response`` is
    stored verbatim on the integration record.
    """

    success: bool
    external_id: Optional[str] = None
    response: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class IntegrationProvider(metaclass=abc.ABCMeta):
    """Abstract provider for a side-effecting external call."""

    integration_type: IntegrationType

    @abc.abstractmethod
    async def invoke(self, step_id: str, payload: Dict[str, Any]) -> IntegrationResult:
        """Perform the external call for ``step_id``.

        Raising an exception counts as a failed attempt.
        """
        raise NotImplementedError
