from __future__ import annotations

import asyncio
import random

from pydantic import BaseModel, Field, model_validator


def compute_backoff(
    attempt: int, base: float = 15.0, cap: float = 300.0, jitter: float = 0.0
) -> float:
    """Compute capped exponential backoff (``base * 2**attempt``) with jitter."""
    delay = min(base * (2 ** max(attempt, 0)), cap)
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


class RetryPolicy(BaseModel):
    """Bounded retry settings for one integration type."""

    max_retries: int = Field(default=3, ge=1)
    base_delay: float = Field(default=15.0, ge=0)
    max_delay: float = Field(default=300.0, ge=0)
    timeout: float = Field(default=10.0, gt=0)
    jitter: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def _timeout_within_backoff(self) -> RetryPolicy:
        first_delay = min(self.base_delay, self.max_delay)
        # zero backoff retries immediately, so there is no interval to fit in
        if first_delay > 0 and self.timeout >= first_delay:
            raise ValueError(
                f"timeout ({self.timeout}s) must be shorter than the first "
                f"backoff ({first_delay}s)"
            )
        return self

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt ``attempt`` (0-based)."""
        return compute_backoff(attempt, self.base_delay, self.max_delay, self.jitter)


async def schedule_retry(policy: RetryPolicy, attempt: int) -> None:
    """Sleep for the policy's backoff delay before retrying."""
    await asyncio.sleep(policy.delay_for(attempt))
