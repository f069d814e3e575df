"""Structured fan-out helpers and cancellation tokens."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from .errors import ExecutionCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Explicit cancel flag with an optional monotonic deadline.

    A token that is never cancelled and has no deadline changes nothing.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self, reason: str = "cancelled") -> None:
        self._cancelled = True
        self._reason = reason

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def reason(self) -> Optional[str]:
        if self._cancelled:
            return self._reason
        if self.cancelled:
            return "deadline exceeded"
        return None

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self, **context: Any) -> None:
        if self.cancelled:
            raise ExecutionCancelledError(f"Execution {self.reason}", **context)


async def bounded_gather(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
) -> List[R]:
    """Run ``worker`` over ``items`` with at most ``limit`` in flight.

    Results come back in input order. The first failure is re-raised as soon
    as it is observed; sibling tasks are left to run to completion and their
    results are discarded.
    """
    if not items:
        return []
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(item: T) -> R:
        async with semaphore:
            return await worker(item)

    tasks = [asyncio.ensure_future(_run(item)) for item in items]
    pending = set(tasks)
    while pending:
        done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            if task.exception() is not None:
                for sibling in tasks:
                    if sibling is not task:
                        sibling.add_done_callback(_consume_result)
                raise task.exception()
    return [task.result() for task in tasks]


def _consume_result(task: "asyncio.Future[Any]") -> None:
    # Retrieve abandoned results so failures are not reported as never retrieved
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Discarded sibling failure after fail-fast: {task.exception()}")
