"""Post-optimization constraint checks and deterministic plan repair."""

from __future__ import annotations

import logging
from typing import Dict, List

from ..contracts import StepEstimate
from ..errors import ConstraintViolationError
from .estimates import group_time, reliability, staged_time, total_cost
from .models import Constraints, OptimizationPlan, ParallelGroup, PlanRepair, Strategy
from .strategies import PlanningProblem, critical_path_of

logger = logging.getLogger(__name__)

MAX_PARALLEL = "max_parallel_operations"
MAX_TIME = "max_execution_time"
MAX_COST = "max_total_cost"
MIN_RELIABILITY = "min_reliability"


def validate_plan(
    plan: OptimizationPlan, constraints: Constraints
) -> List[ConstraintViolationError]:
    """Return one violation per constraint the plan breaks."""
    violations: List[ConstraintViolationError] = []
    if plan.max_group_size > constraints.max_parallel_operations:
        violations.append(
            ConstraintViolationError(
                MAX_PARALLEL,
                plan.max_group_size,
                constraints.max_parallel_operations,
                f"Parallel group size {plan.max_group_size} exceeds limit "
                f"{constraints.max_parallel_operations}",
            )
        )
    if plan.estimated_time > constraints.max_execution_time:
        violations.append(
            ConstraintViolationError(
                MAX_TIME,
                plan.estimated_time,
                constraints.max_execution_time,
                f"Execution time {plan.estimated_time:.0f}ms exceeds limit "
                f"{constraints.max_execution_time:.0f}ms",
            )
        )
    if plan.estimated_cost > constraints.max_total_cost:
        violations.append(
            ConstraintViolationError(
                MAX_COST,
                plan.estimated_cost,
                constraints.max_total_cost,
                f"Total cost {plan.estimated_cost:g} exceeds limit "
                f"{constraints.max_total_cost:g}",
            )
        )
    if plan.estimated_reliability < constraints.min_reliability:
        violations.append(
            ConstraintViolationError(
                MIN_RELIABILITY,
                plan.estimated_reliability,
                constraints.min_reliability,
                f"Reliability {plan.estimated_reliability:.3f} below minimum "
                f"{constraints.min_reliability:.3f}",
            )
        )
    return violations


class PlanRepairer:
    """Applies deterministic fixes for constraint violations.

    Oversized groups are split, time and cost overruns drop steps nothing
    else depends on (most expensive first, then latest declared), and
    reliability shortfalls are annotated. Every fix is logged and recorded on
    the plan.
    """

    def __init__(self, problem: PlanningProblem, constraints: Constraints) -> None:
        self.problem = problem
        self.constraints = constraints

    @property
    def estimates(self) -> Dict[str, StepEstimate]:
        return self.problem.estimates

    def repair(self, plan: OptimizationPlan) -> OptimizationPlan:
        plan = plan.model_copy(deep=True)
        violations = validate_plan(plan, self.constraints)
        if not violations:
            return plan

        kinds = {v.constraint for v in violations}
        if MAX_PARALLEL in kinds:
            self._split_groups(plan)
        if MAX_TIME in kinds or MAX_COST in kinds:
            self._drop_steps(plan)

        for violation in validate_plan(plan, self.constraints):
            if violation.constraint in (MAX_PARALLEL,):
                continue
            self._record(
                plan,
                PlanRepair(
                    constraint=violation.constraint,
                    action="annotated",
                    detail=f"{violation} (no deterministic fix available)",
                ),
            )
        return plan

    def _record(self, plan: OptimizationPlan, repair: PlanRepair) -> None:
        logger.warning(
            f"Plan repair for workflow {plan.workflow_id} ({plan.strategy.value}): "
            f"{repair.constraint} -> {repair.action}: {repair.detail}"
        )
        plan.repairs.append(repair)

    def _split_groups(self, plan: OptimizationPlan) -> None:
        limit = self.constraints.max_parallel_operations
        groups: List[ParallelGroup] = []
        split: List[str] = []
        for group in plan.parallel_groups:
            if len(group.operations) <= limit:
                groups.append(group)
                continue
            split.extend(group.operations[limit:])
            for start in range(0, len(group.operations), limit):
                chunk = group.operations[start : start + limit]
                groups.append(
                    ParallelGroup(operations=chunk, estimated_time=group_time(chunk, self.estimates))
                )
        plan.parallel_groups = groups
        self._refresh(plan)
        self._record(
            plan,
            PlanRepair(
                constraint=MAX_PARALLEL,
                action="split_groups",
                detail=f"moved {len(split)} step(s) into follow-up groups of at most {limit}",
                steps=split,
            ),
        )

    def _drop_candidates(self, plan: OptimizationPlan) -> List[str]:
        retained = set(plan.ordered_steps)
        needed = {
            dep for step in retained for dep in self.problem.deps.get(step, ()) if dep in retained
        }
        sinks = [s for s in plan.ordered_steps if s not in needed]
        by_cost = plan.estimated_cost > self.constraints.max_total_cost

        def priority(step: str):
            estimate = self.estimates[step]
            weight = estimate.cost if by_cost else estimate.time_ms
            return (weight, self.problem.position(step))

        return sorted(sinks, key=priority, reverse=True)

    def _over_budget(self, plan: OptimizationPlan) -> bool:
        return (
            plan.estimated_time > self.constraints.max_execution_time
            or plan.estimated_cost > self.constraints.max_total_cost
        )

    def _drop_steps(self, plan: OptimizationPlan) -> None:
        dropped: List[str] = []
        while self._over_budget(plan) and len(plan.ordered_steps) > 1:
            victim = self._drop_candidates(plan)[0]
            plan.ordered_steps.remove(victim)
            for group in plan.parallel_groups:
                if victim in group.operations:
                    group.operations.remove(victim)
            plan.parallel_groups = [g for g in plan.parallel_groups if g.operations]
            plan.critical_path = [s for s in plan.critical_path if s != victim]
            plan.bottlenecks = [s for s in plan.bottlenecks if s != victim]
            dropped.append(victim)
            self._refresh(plan)
        if dropped:
            plan.dropped_steps.extend(dropped)
            self._record(
                plan,
                PlanRepair(
                    constraint="budget",
                    action="drop_steps",
                    detail=(
                        f"dropped {len(dropped)} lowest-priority step(s); "
                        f"time={plan.estimated_time:.0f}ms cost={plan.estimated_cost:g}"
                    ),
                    steps=dropped,
                ),
            )

    def _refresh(self, plan: OptimizationPlan) -> None:
        """Recompute estimates after the plan's shape changed."""
        for group in plan.parallel_groups:
            group.estimated_time = group_time(group.operations, self.estimates)
        plan.estimated_cost = total_cost(plan.ordered_steps, self.estimates)
        plan.estimated_reliability = reliability(plan.ordered_steps, self.estimates)
        if plan.strategy == Strategy.CRITICAL_PATH:
            path, path_time = critical_path_of(self.problem, plan.ordered_steps)
            plan.critical_path = path
            parallel_time = max((g.estimated_time for g in plan.parallel_groups), default=0.0)
            plan.estimated_time = max(path_time, parallel_time)
            plan.details["critical_path_time"] = path_time
            plan.details["parallel_time"] = parallel_time
        else:
            plan.estimated_time = staged_time(
                [g.operations for g in plan.parallel_groups], self.estimates
            )
