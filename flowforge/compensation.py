"""Compensation registry and rollback unwinding."""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .contracts import ExecutionState, RollbackEntry, StepType
from .errors import RollbackError

logger = logging.getLogger(__name__)

CompensationHandler = Callable[[RollbackEntry], Union[None, Awaitable[None]]]


class RollbackReport(BaseModel):
    """Outcome of unwinding one execution's rollback stack."""

    compensated: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.compensated) + len(self.skipped) + len(self.failed)


class CompensationRegistry:
    """Maps step types to reverse-action handlers.

    Read-mostly; safe to share between concurrent executions.
    """

    def __init__(self) -> None:
        self._handlers: Dict[StepType, CompensationHandler] = {}

    def register(self, step_type: StepType, handler: CompensationHandler) -> None:
        self._handlers[StepType(step_type)] = handler

    def unregister(self, step_type: StepType) -> None:
        self._handlers.pop(StepType(step_type), None)

    def get(self, step_type: StepType) -> Optional[CompensationHandler]:
        return self._handlers.get(step_type)

    def __contains__(self, step_type: object) -> bool:
        return step_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    async def compensate(self, entry: RollbackEntry) -> bool:
        """Run the handler for ``entry``.

        Returns:
            ``False`` when no handler is registered for the entry's type.

        Raises:
            RollbackError: If the handler itself fails.
        """
        handler = self._handlers.get(entry.step_type)
        if handler is None:
            return False
        try:
            outcome = handler(entry)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            raise RollbackError(entry.step_id, entry.step_type.value, e) from e
        return True

    async def rollback(self, state: ExecutionState) -> RollbackReport:
        """Pop ``state.rollback_stack`` in reverse push order, best effort."""
        report = RollbackReport()
        if not state.rollback_stack:
            return report

        logger.info(
            f"Executing rollback of {len(state.rollback_stack)} step(s) "
            f"for execution_id={state.execution_id}"
        )
        while True:
            entry = state.pop_rollback()
            if entry is None:
                break
            try:
                handled = await self.compensate(entry)
            except RollbackError as e:
                logger.error(f"{e} (execution_id={state.execution_id})")
                report.failed[entry.step_id] = str(e.cause)
                continue
            if handled:
                logger.info(
                    f"Compensated step {entry.step_id} for execution_id={state.execution_id}"
                )
                report.compensated.append(entry.step_id)
            else:
                logger.warning(
                    f"No rollback handler for step type {entry.step_type.value}; "
                    f"skipping step {entry.step_id}"
                )
                report.skipped.append(entry.step_id)
        return report
