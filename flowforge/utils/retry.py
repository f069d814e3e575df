from __future__ import annotations

import asyncio
import random
from typing import Optional

from pydantic import BaseModel, Field


class RetryPolicy(BaseModel):
    """Backoff settings for re-running workflows that request a retry."""

    base: float = Field(default=1.5, gt=0)
    jitter: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=30.0, gt=0)


def compute_backoff(attempt: int, policy: Optional[RetryPolicy] = None) -> float:
    """Exponential backoff for ``attempt`` plus jitter, capped at ``max_delay``."""
    policy = policy or RetryPolicy()
    delay = min(policy.base ** max(attempt, 0), policy.max_delay)
    return delay + random.uniform(0, policy.jitter)


async def schedule_retry(attempt: int, policy: Optional[RetryPolicy] = None) -> float:
    """Sleep for the backoff of ``attempt`` and return the delay used."""
    delay = compute_backoff(attempt, policy)
    await asyncio.sleep(delay)
    return delay
