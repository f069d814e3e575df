"""Step handler registry with an exhaustive dispatch table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from ..concurrency import CancellationToken
from ..contracts import StepResult, StepSpec, StepType
from ..errors import UnknownStepTypeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepContext:
    """Read-only view of an execution handed to step handlers."""

    execution_id: str
    workflow_id: str
    context: Mapping[str, Any]
    step_results: Mapping[str, StepResult]
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    interactive: bool = True
    unit_id: Optional[str] = None
    unit: Any = None

    @classmethod
    def snapshot(
        cls,
        execution_id: str,
        workflow_id: str,
        context: Mapping[str, Any],
        step_results: Mapping[str, StepResult],
        **kwargs: Any,
    ) -> "StepContext":
        return cls(
            execution_id=execution_id,
            workflow_id=workflow_id,
            context=MappingProxyType(dict(context)),
            step_results=MappingProxyType(dict(step_results)),
            **kwargs,
        )

    def for_unit(self, unit_id: str, unit: Any) -> "StepContext":
        """Derive the context seen by one parallel-call-group unit."""
        return StepContext(
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            context=self.context,
            step_results=self.step_results,
            cancellation=self.cancellation,
            interactive=self.interactive,
            unit_id=unit_id,
            unit=unit,
        )

    def collect_parameters(self, step: StepSpec) -> Dict[str, Any]:
        """Pick the step's declared parameters out of the execution context."""
        return {name: self.context[name] for name in step.parameters if name in self.context}


StepHandler = Callable[[StepSpec, StepContext], Awaitable[Any]]


class StepHandlerRegistry:
    """Maps every :class:`StepType` to the coroutine that executes it.

    The table always has one slot per variant; a slot left empty makes
    dispatch of that variant fail with :class:`UnknownStepTypeError`.
    """

    def __init__(
        self,
        handlers: Optional[Mapping[StepType, StepHandler]] = None,
        include_builtins: bool = True,
    ) -> None:
        self._table: Dict[StepType, Optional[StepHandler]] = {t: None for t in StepType}
        if include_builtins:
            from .builtin import BUILTIN_HANDLERS

            for step_type, handler in BUILTIN_HANDLERS.items():
                self._table[step_type] = handler
        for step_type, handler in (handlers or {}).items():
            self.register(step_type, handler)

    def register(self, step_type: StepType, handler: StepHandler) -> None:
        self._table[StepType(step_type)] = handler

    def handler(self, step_type: StepType) -> Callable[[StepHandler], StepHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(func: StepHandler) -> StepHandler:
            self.register(step_type, func)
            return func

        return decorator

    def get(self, step_type: StepType) -> Optional[StepHandler]:
        return self._table.get(step_type)

    def missing(self) -> List[StepType]:
        """Variants that currently have no handler."""
        return [t for t, h in self._table.items() if h is None]

    def require_complete(self) -> None:
        missing = self.missing()
        if missing:
            raise UnknownStepTypeError(", ".join(t.value for t in missing))

    async def dispatch(self, step: StepSpec, ctx: StepContext) -> StepResult:
        """Invoke the handler for ``step.type`` and normalise its result."""
        try:
            step_type = StepType(step.type)
        except ValueError:
            raise UnknownStepTypeError(
                step.type, step_id=step.id, execution_id=ctx.execution_id
            ) from None
        handler = self._table.get(step_type)
        if handler is None:
            raise UnknownStepTypeError(
                step_type.value, step_id=step.id, execution_id=ctx.execution_id
            )
        outcome = await handler(step, ctx)
        return coerce_result(outcome)


def coerce_result(outcome: Any) -> StepResult:
    """Accept a StepResult, a dict in its shape, or a bare value."""
    if isinstance(outcome, StepResult):
        return outcome
    if isinstance(outcome, dict) and "success" in outcome:
        return StepResult.model_validate(outcome)
    return StepResult(result=outcome)
