"""Workflow execution engine for flowforge."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .cache import CachePort, InMemoryCache, build_cache_key
from .catalog import WorkflowCatalog
from .compensation import CompensationRegistry, RollbackReport
from .concurrency import CancellationToken, bounded_gather
from .config import FlowforgeConfig
from .contracts import (
    ExecutionResult,
    ExecutionState,
    ExecutionStatus,
    StepResult,
    StepSpec,
    StepType,
    WorkflowDefinition,
    WorkflowSummary,
)
from .errors import (
    DependencyUnmetError,
    ExecutionCancelledError,
    ExecutionFailure,
    InvalidWorkflowError,
    StepExecutionError,
    UnknownStepTypeError,
)
from .graph import topological_order
from .handlers import StepContext, StepHandlerRegistry, coerce_result
from .metrics import MetricsCollector, MetricsSnapshot
from .optimizer import Constraints, OptimizationPlan, OptimizationTarget, Strategy, WorkflowOptimizer
from .store import ExecutionStore
from .utils import retry

logger = logging.getLogger(__name__)

PostProcessor = Callable[[WorkflowDefinition, ExecutionState, Any], Union[Any, Awaitable[Any]]]

# Failures that no error-handling policy may downgrade
_FATAL = (DependencyUnmetError, UnknownStepTypeError, ExecutionCancelledError)


class ExecutionOptions(BaseModel):
    """Per-call execution settings."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    plan: Optional[OptimizationPlan] = None
    max_parallel_operations: Optional[int] = Field(default=None, ge=1)
    interactive: bool = True
    cancellation: Optional[CancellationToken] = None
    timeout: Optional[float] = Field(default=None, description="Seconds")
    attempt: int = 1


class EngineStats(BaseModel):
    """Point-in-time view of the engine."""

    metrics: MetricsSnapshot
    active_executions: int
    total_executions: int
    registered_workflows: int
    compensation_handlers: int
    missing_handlers: List[StepType] = Field(default_factory=list)


@dataclass
class _RunOutcome:
    result: Any = None
    status: ExecutionStatus = ExecutionStatus.COMPLETED
    failed_step: Optional[str] = None
    error: Optional[str] = None
    retry_requested: bool = False
    prompt: Optional[Dict[str, Any]] = None
    terminated_early: bool = False
    skipped: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED


class WorkflowEngine:
    """Runs workflow definitions step by step in dependency order.

    The engine owns its execution arena; handler, cache and compensation
    registries are injected and may be shared between engines.
    """

    def __init__(
        self,
        catalog: Optional[WorkflowCatalog] = None,
        handlers: Optional[StepHandlerRegistry] = None,
        cache: Optional[CachePort] = None,
        compensations: Optional[CompensationRegistry] = None,
        metrics: Optional[MetricsCollector] = None,
        optimizer: Optional[WorkflowOptimizer] = None,
        post_processor: Optional[PostProcessor] = None,
        config: Optional[FlowforgeConfig] = None,
        store: Optional[ExecutionStore] = None,
    ) -> None:
        self.config = config or FlowforgeConfig()
        self.catalog = catalog or WorkflowCatalog()
        self.handlers = handlers or StepHandlerRegistry()
        self.cache: CachePort = cache if cache is not None else InMemoryCache()
        self.compensations = compensations or CompensationRegistry()
        self.metrics = metrics or MetricsCollector()
        self.optimizer = optimizer or WorkflowOptimizer(self.config.optimizer)
        self.post_processor = post_processor
        self.store = store or ExecutionStore(
            history_ttl=self.config.engine.history_ttl_seconds,
            history_limit=self.config.engine.history_limit,
            abandon_after=self.config.engine.abandon_after_seconds,
        )
        logger.info(
            f"Workflow engine initialized with {len(self.catalog)} workflow(s); "
            f"unhandled step types: {[t.value for t in self.handlers.missing()]}"
        )

    # ------------------------------------------------------------------
    # Catalog access
    def register_workflow(self, definition: Union[WorkflowDefinition, dict]) -> WorkflowDefinition:
        return self.catalog.register(definition)

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return self.catalog.get(workflow_id)

    def list_workflows(self) -> List[WorkflowSummary]:
        return self.catalog.list_summaries()

    def optimize_workflow(
        self,
        workflow: Union[str, WorkflowDefinition],
        constraints: Optional[Constraints] = None,
        strategy: Union[str, Strategy, OptimizationTarget, None] = OptimizationTarget.BALANCED,
    ) -> OptimizationPlan:
        definition = self.get_workflow(workflow) if isinstance(workflow, str) else workflow
        return self.optimizer.optimize_workflow(definition, constraints, strategy)

    # ------------------------------------------------------------------
    # Introspection
    def get_execution(self, execution_id: str) -> Optional[ExecutionState]:
        return self.store.get(execution_id)

    def get_stats(self) -> EngineStats:
        return EngineStats(
            metrics=self.metrics.snapshot(),
            active_executions=self.store.active_count,
            total_executions=self.store.history_count,
            registered_workflows=len(self.catalog),
            compensation_handlers=len(self.compensations),
            missing_handlers=self.handlers.missing(),
        )

    def sweep_history(self) -> int:
        removed = self.store.sweep()
        if removed:
            logger.info(f"Swept {removed} expired execution(s)")
        return removed

    # ------------------------------------------------------------------
    # Execution
    async def execute_workflow(
        self,
        workflow_id: str,
        initial_context: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        """Execute ``workflow_id`` against ``initial_context``.

        Returns:
            An :class:`ExecutionResult`. Retry requests and user-input
            prompts are reported through the result rather than raised.

        Raises:
            WorkflowNotFoundError: If the workflow id is unknown.
            InvalidWorkflowError: If a supplied plan does not match the workflow.
            ExecutionFailure: Any fatal step failure, after rollback. The
                exception carries ``step_id``, ``execution_id``,
                ``completed_steps`` and the ``rollback`` report.
        """
        definition = self.get_workflow(workflow_id)
        options = options or ExecutionOptions()
        order, skipped = self._resolve_order(definition, options.plan)
        token = options.cancellation or CancellationToken(options.timeout)

        state = ExecutionState(workflow_id=definition.id, context=dict(initial_context or {}))
        self.store.start(state)
        self.metrics.record_start()
        started = time.perf_counter()
        logger.info(
            f"Workflow execution started: workflow={definition.id} "
            f"execution_id={state.execution_id} steps={len(order)}"
        )

        try:
            outcome = await self._run_steps(definition, state, order, options, token)
            outcome.skipped = skipped
            if outcome.success:
                outcome.result = await self._post_process(definition, state, outcome.result)
        except ExecutionFailure as e:
            elapsed = (time.perf_counter() - started) * 1000
            await self._fail(state, e, elapsed)
            raise

        elapsed = (time.perf_counter() - started) * 1000
        return self._finish(definition, state, outcome, elapsed, options)

    async def execute_with_retry(
        self,
        workflow_id: str,
        initial_context: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
        max_attempts: int = 3,
    ) -> ExecutionResult:
        """Re-run a workflow while its policy keeps requesting retries."""
        options = options or ExecutionOptions()
        attempt = options.attempt
        while True:
            result = await self.execute_workflow(
                workflow_id,
                initial_context,
                options.model_copy(update={"attempt": attempt}),
            )
            if not result.retry_requested or attempt >= max_attempts:
                return result
            logger.info(
                f"Retrying workflow {workflow_id} after step {result.failed_step} "
                f"(attempt {attempt + 1}/{max_attempts})"
            )
            await retry.schedule_retry(attempt, self.config.engine.retry)
            attempt += 1

    def _resolve_order(
        self, definition: WorkflowDefinition, plan: Optional[OptimizationPlan]
    ) -> Tuple[List[StepSpec], List[str]]:
        """Steps to run, in order, and the ids a plan chose to drop."""
        topo = topological_order(definition.step_ids, definition.dependencies)
        if plan is None:
            return [definition.get_step(s) for s in topo], []

        if plan.workflow_id != definition.id:
            raise InvalidWorkflowError(
                definition.id, f"plan was built for workflow '{plan.workflow_id}'"
            )
        unknown = [s for s in plan.ordered_steps if definition.get_step(s) is None]
        if unknown:
            raise InvalidWorkflowError(
                definition.id, f"plan references unknown steps: {', '.join(unknown)}"
            )
        if len(set(plan.ordered_steps)) != len(plan.ordered_steps):
            raise InvalidWorkflowError(definition.id, "plan schedules a step more than once")

        skipped = [s for s in plan.dropped_steps if s not in plan.ordered_steps]
        planned = set(plan.ordered_steps) | set(skipped)
        order = list(plan.ordered_steps) + [s for s in topo if s not in planned]
        return [definition.get_step(s) for s in order], skipped

    async def _run_steps(
        self,
        definition: WorkflowDefinition,
        state: ExecutionState,
        order: List[StepSpec],
        options: ExecutionOptions,
        token: CancellationToken,
    ) -> _RunOutcome:
        final: Any = None
        total = len(order)
        for index, step in enumerate(order):
            state.current_step_index = index
            missing = state.missing_dependencies(step)
            if missing:
                raise DependencyUnmetError(
                    step.id,
                    missing,
                    execution_id=state.execution_id,
                    completed_steps=state.completed_steps,
                )
            token.raise_if_cancelled(
                step_id=step.id,
                execution_id=state.execution_id,
                completed_steps=state.completed_steps,
            )

            logger.info(
                f"Executing step {step.id} ({step.type.value}) {index + 1}/{total} "
                f"for execution_id={state.execution_id}"
            )
            cause: Optional[BaseException] = None
            try:
                result = await self._execute_step(definition, step, state, options, token)
            except _FATAL:
                raise
            except Exception as e:
                logger.error(f"Step {step.id} raised for execution_id={state.execution_id}: {e}")
                cause = e
                reason = e.reason if isinstance(e, StepExecutionError) else str(e)
                result = StepResult(success=False, error=reason)

            if result.requires_user_input:
                logger.info(f"Step {step.id} requires user input; pausing execution")
                return _RunOutcome(
                    status=ExecutionStatus.AWAITING_INPUT,
                    failed_step=step.id,
                    error=result.error,
                    prompt=result.prompt or {"step_id": step.id},
                )

            if not result.success:
                reason = result.error or "step reported failure"
                policy = definition.error_handling
                if policy.should_retry(step.id):
                    logger.info(f"Step {step.id} failed ({reason}); retry requested by policy")
                    return _RunOutcome(
                        status=ExecutionStatus.FAILED,
                        failed_step=step.id,
                        error=reason,
                        retry_requested=True,
                    )
                if policy.should_prompt(step.id):
                    logger.info(f"Step {step.id} failed ({reason}); converting to user prompt")
                    return _RunOutcome(
                        status=ExecutionStatus.AWAITING_INPUT,
                        failed_step=step.id,
                        error=reason,
                        prompt=result.prompt
                        or {"step_id": step.id, "step_name": step.display_name, "error": reason},
                    )
                raise StepExecutionError(
                    step.id,
                    reason,
                    cause=cause,
                    execution_id=state.execution_id,
                    completed_steps=state.completed_steps,
                )

            state.mark_complete(step, result)
            final = result.result
            if result.terminate:
                logger.info(f"Step {step.id} terminated workflow {definition.id} early")
                return _RunOutcome(result=final, terminated_early=True)
        return _RunOutcome(result=final)

    async def _execute_step(
        self,
        definition: WorkflowDefinition,
        step: StepSpec,
        state: ExecutionState,
        options: ExecutionOptions,
        token: CancellationToken,
    ) -> StepResult:
        ctx = StepContext.snapshot(
            state.execution_id,
            definition.id,
            state.context,
            state.step_results,
            cancellation=token,
            interactive=options.interactive,
        )
        started = time.perf_counter()

        if step.type == StepType.PARALLEL_CALL_GROUP:
            result = await self._execute_parallel_group(definition, step, state, ctx, options)
        else:
            cache_key = None
            if step.cacheable:
                cache_key = build_cache_key(definition.id, step, state.context)
                cached = await self._cache_get(cache_key, ctx)
                if cached is not None:
                    logger.info(f"Step {step.id} served from cache")
                    return StepResult(result=cached, from_cache=True)
            result = await self.handlers.dispatch(step, ctx)
            if cache_key and result.success and not result.requires_user_input:
                await self._cache_set(step, cache_key, result.result)

        if not step.rollbackable and result.rollback_data is not None:
            result = result.model_copy(update={"rollback_data": None})
        logger.debug(
            f"Step {step.id} finished in {(time.perf_counter() - started) * 1000:.1f}ms "
            f"success={result.success}"
        )
        return result

    async def _execute_parallel_group(
        self,
        definition: WorkflowDefinition,
        step: StepSpec,
        state: ExecutionState,
        ctx: StepContext,
        options: ExecutionOptions,
    ) -> StepResult:
        """Fan out one handler call per unit; the first failure fails the step."""
        handler = self.handlers.get(StepType.PARALLEL_CALL_GROUP)
        if handler is None:
            raise UnknownStepTypeError(
                StepType.PARALLEL_CALL_GROUP.value,
                step_id=step.id,
                execution_id=state.execution_id,
            )
        units = self._parallel_units(step, state)
        limit = options.max_parallel_operations or self.config.engine.max_parallel_operations

        async def run_unit(unit: Tuple[str, Any]) -> Dict[str, Any]:
            unit_id, payload = unit
            ctx.cancellation.raise_if_cancelled(
                step_id=step.id,
                execution_id=state.execution_id,
                completed_steps=state.completed_steps,
            )
            cache_key = None
            if step.cacheable:
                cache_key = build_cache_key(definition.id, step, state.context, suffix=unit_id)
                cached = await self._cache_get(cache_key, ctx)
                if cached is not None:
                    return {"id": unit_id, "data": cached, "from_cache": True}
            outcome = coerce_result(await handler(step, ctx.for_unit(unit_id, payload)))
            if not outcome.success:
                raise StepExecutionError(
                    step.id,
                    f"parallel call failed for unit {unit_id}: {outcome.error or 'unknown error'}",
                    execution_id=state.execution_id,
                )
            if cache_key:
                await self._cache_set(step, cache_key, outcome.result)
            return {"id": unit_id, "data": outcome.result, "from_cache": False}

        results = await bounded_gather(units, run_unit, limit)
        return StepResult(
            result=results,
            rollback_data={"units": [r["id"] for r in results]} if step.rollbackable else None,
            metadata={
                "total_calls": len(results),
                "cache_hits": sum(1 for r in results if r["from_cache"]),
            },
        )

    @staticmethod
    def _parallel_units(step: StepSpec, state: ExecutionState) -> List[Tuple[str, Any]]:
        source = step.source
        if source and source in state.step_results:
            value = state.step_results[source].result
        elif source and source in state.context:
            value = state.context[source]
        else:
            raise StepExecutionError(
                step.id,
                f"source data for parallel calls not found: {source}",
                execution_id=state.execution_id,
            )
        if not isinstance(value, list):
            raise StepExecutionError(
                step.id,
                f"source data for parallel calls is not a list: {source}",
                execution_id=state.execution_id,
            )
        units = []
        for item in value:
            if isinstance(item, dict) and "id" in item:
                units.append((str(item["id"]), item))
            else:
                units.append((str(item), {"id": item}))
        return units

    async def _cache_get(self, key: str, ctx: StepContext) -> Any:
        cached = await self.cache.get(
            key, {"workflow_id": ctx.workflow_id, "execution_id": ctx.execution_id}
        )
        self.metrics.record_cache(cached is not None)
        return cached

    async def _cache_set(self, step: StepSpec, key: str, value: Any) -> None:
        options = step.cache
        await self.cache.set(
            key,
            value,
            ttl=options.ttl if options else None,
            classification=options.classification if options else None,
        )

    async def _post_process(
        self, definition: WorkflowDefinition, state: ExecutionState, result: Any
    ) -> Any:
        if self.post_processor is None:
            return result
        try:
            processed = self.post_processor(definition, state, result)
            if inspect.isawaitable(processed):
                processed = await processed
        except Exception as e:
            raise ExecutionFailure(
                f"Post-processing failed: {e}",
                execution_id=state.execution_id,
                completed_steps=state.completed_steps,
            ) from e
        return processed

    async def _fail(
        self, state: ExecutionState, error: ExecutionFailure, elapsed: float
    ) -> RollbackReport:
        error.execution_id = error.execution_id or state.execution_id
        error.completed_steps = list(state.completed_steps)
        state.failed_step = error.step_id
        self.metrics.record_finish(elapsed, success=False)

        report = RollbackReport()
        if state.rollback_stack:
            self.metrics.record_rollback()
            report = await self.compensations.rollback(state)
        error.rollback = report

        state.finish(ExecutionStatus.FAILED, str(error))
        self.store.finish(state.execution_id, state)
        logger.error(
            f"Workflow execution failed: workflow={state.workflow_id} "
            f"execution_id={state.execution_id} step={error.step_id}: {error}"
        )
        return report

    def _finish(
        self,
        definition: WorkflowDefinition,
        state: ExecutionState,
        outcome: _RunOutcome,
        elapsed: float,
        options: ExecutionOptions,
    ) -> ExecutionResult:
        state.failed_step = outcome.failed_step
        state.finish(outcome.status, outcome.error)
        self.metrics.record_finish(elapsed, success=outcome.success)
        self.store.finish(state.execution_id, state)

        metadata: Dict[str, Any] = {
            "workflow_id": definition.id,
            "attempt": options.attempt,
            "terminated_early": outcome.terminated_early,
        }
        if outcome.skipped:
            metadata["skipped_steps"] = outcome.skipped
        if options.plan is not None:
            metadata["strategy"] = options.plan.strategy.value
            if options.plan.repairs:
                metadata["plan_repairs"] = [r.model_dump() for r in options.plan.repairs]
        if outcome.retry_requested:
            metadata["retry_after"] = retry.compute_backoff(
                options.attempt, self.config.engine.retry
            )

        if outcome.success:
            logger.info(
                f"Workflow execution completed: workflow={definition.id} "
                f"execution_id={state.execution_id} time={elapsed:.1f}ms "
                f"steps={len(state.completed_steps)}"
            )
        return ExecutionResult(
            success=outcome.success,
            execution_id=state.execution_id,
            workflow_id=definition.id,
            status=outcome.status,
            result=outcome.result,
            execution_time=elapsed,
            steps_completed=len(state.completed_steps),
            completed_steps=list(state.completed_steps),
            failed_step=outcome.failed_step,
            error=outcome.error,
            retry_requested=outcome.retry_requested,
            requires_user_input=outcome.status == ExecutionStatus.AWAITING_INPUT,
            prompt=outcome.prompt,
            metadata=metadata,
        )
