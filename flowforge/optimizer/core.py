"""Workflow optimizer entry point."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Union

from ..config import OptimizerConfig
from ..contracts import WorkflowDefinition
from .estimates import reliability, total_cost, total_time
from .models import (
    Constraints,
    OptimizationMetrics,
    OptimizationPlan,
    OptimizationTarget,
    Strategy,
)
from .strategies import (
    GeneticOptimizer,
    PlanningProblem,
    critical_path,
    dynamic_programming,
    greedy_cost,
    greedy_time,
    sequential,
)
from .validation import PlanRepairer

logger = logging.getLogger(__name__)

StrategyFn = Callable[[PlanningProblem, Constraints], OptimizationPlan]


def _pct(before: float, after: float) -> float:
    if not before:
        return 0.0
    return round((before - after) / before * 100, 2)


class WorkflowOptimizer:
    """Chooses and runs one of the optimization strategies for a workflow."""

    def __init__(self, config: Optional[OptimizerConfig] = None) -> None:
        self.config = config or OptimizerConfig()
        self.default_constraints = Constraints.from_config(self.config.constraints)
        self._strategies: Dict[Strategy, StrategyFn] = {
            Strategy.GREEDY_TIME: greedy_time,
            Strategy.GREEDY_COST: greedy_cost,
            Strategy.CRITICAL_PATH: critical_path,
            Strategy.DYNAMIC_PROGRAMMING: self._dynamic_programming,
            Strategy.GENETIC_BALANCED: self._genetic,
            Strategy.SEQUENTIAL: sequential,
        }

    def _dynamic_programming(
        self, problem: PlanningProblem, constraints: Constraints
    ) -> OptimizationPlan:
        return dynamic_programming(problem, constraints, max_steps=self.config.dp_max_steps)

    def _genetic(self, problem: PlanningProblem, constraints: Constraints) -> OptimizationPlan:
        genetic = GeneticOptimizer(
            population_size=self.config.population_size,
            generations=self.config.generations,
            mutation_rate=self.config.mutation_rate,
            seed=self.config.seed,
        )
        return genetic.optimize(problem, constraints)

    @staticmethod
    def parse_hint(
        hint: Union[str, Strategy, OptimizationTarget, None],
    ) -> "tuple[Optional[Strategy], OptimizationTarget]":
        """Split a hint into an explicit strategy (if any) and a target."""
        if hint is None:
            return None, OptimizationTarget.BALANCED
        if isinstance(hint, Strategy):
            return hint, OptimizationTarget.BALANCED
        if isinstance(hint, OptimizationTarget):
            return None, hint
        value = str(hint).lower()
        if value in {s.value for s in Strategy}:
            return Strategy(value), OptimizationTarget.BALANCED
        if value in {t.value for t in OptimizationTarget}:
            return None, OptimizationTarget(value)
        raise ValueError(f"Unknown optimization strategy: {hint}")

    def select_strategy(self, step_count: int, target: OptimizationTarget) -> Strategy:
        """Deterministic choice by workflow size."""
        if step_count <= 3:
            return (
                Strategy.GREEDY_COST if target == OptimizationTarget.COST else Strategy.GREEDY_TIME
            )
        if step_count <= 6:
            return Strategy.CRITICAL_PATH
        return Strategy.GENETIC_BALANCED

    def optimize_workflow(
        self,
        workflow: WorkflowDefinition,
        constraints: Optional[Constraints] = None,
        strategy: Union[str, Strategy, OptimizationTarget, None] = OptimizationTarget.BALANCED,
    ) -> OptimizationPlan:
        """Produce an :class:`OptimizationPlan` for ``workflow``.

        Args:
            workflow: A validated workflow definition.
            constraints: Limits to satisfy; defaults come from configuration.
            strategy: Either a target (``speed``, ``cost``, ``reliability``,
                ``balanced``) used for automatic selection, or a concrete
                strategy name which is always honoured.

        Raises:
            ValueError: For unknown hints, or dynamic programming on a
                workflow larger than ``dp_max_steps``.
        """
        explicit, target = self.parse_hint(strategy)
        constraints = constraints or self.default_constraints
        problem = PlanningProblem.from_definition(workflow, target)
        chosen = explicit or self.select_strategy(len(problem.step_ids), target)
        if chosen == Strategy.DYNAMIC_PROGRAMMING and len(problem.step_ids) > self.config.dp_max_steps:
            raise ValueError(
                f"dynamic programming supports at most {self.config.dp_max_steps} steps, "
                f"workflow {workflow.id} has {len(problem.step_ids)}"
            )

        logger.debug(
            f"Optimizing workflow {workflow.id} ({len(problem.step_ids)} steps) "
            f"with {chosen.value}"
        )
        started = time.perf_counter()
        try:
            plan = self._strategies[chosen](problem, constraints)
        except Exception as e:
            logger.error(
                f"Optimization of workflow {workflow.id} with {chosen.value} failed: {e}; "
                "falling back to sequential plan"
            )
            plan = sequential(problem, constraints)
            plan.fallback_used = True
            plan.details["error"] = str(e)

        plan = PlanRepairer(problem, constraints).repair(plan)
        plan.constraints = constraints
        plan.metrics = self._metrics(problem, plan, (time.perf_counter() - started) * 1000)
        logger.debug(
            f"Optimized workflow {workflow.id}: time={plan.estimated_time:.0f}ms "
            f"cost={plan.estimated_cost:g} groups={len(plan.parallel_groups)} "
            f"repairs={len(plan.repairs)}"
        )
        return plan

    @staticmethod
    def _metrics(
        problem: PlanningProblem, plan: OptimizationPlan, elapsed_ms: float
    ) -> OptimizationMetrics:
        base_time = total_time(problem.step_ids, problem.estimates)
        base_cost = total_cost(problem.step_ids, problem.estimates)
        base_reliability = reliability(problem.step_ids, problem.estimates)
        time_gain = _pct(base_time, plan.estimated_time)
        cost_gain = _pct(base_cost, plan.estimated_cost)
        reliability_change = -_pct(base_reliability, plan.estimated_reliability)
        return OptimizationMetrics(
            time_improvement=time_gain,
            cost_improvement=cost_gain,
            reliability_change=reliability_change,
            overall_improvement=round((time_gain + cost_gain + reliability_change) / 3, 2),
            parallelization_benefit=plan.max_group_size > 1,
            optimization_time_ms=elapsed_ms,
        )
