"""Plan optimizer for flowforge workflows."""

from __future__ import annotations

from .core import WorkflowOptimizer
from .estimates import DEFAULT_ESTIMATES, estimate_steps
from .models import (
    Constraints,
    OptimizationMetrics,
    OptimizationPlan,
    OptimizationTarget,
    ParallelGroup,
    PlanRepair,
    Strategy,
)
from .strategies import (
    OPTIMIZATION_WEIGHTS,
    GeneticOptimizer,
    PlanningProblem,
    critical_path,
    dynamic_programming,
    greedy_cost,
    greedy_time,
    sequential,
)
from .validation import PlanRepairer, validate_plan

__all__ = [
    "Constraints",
    "DEFAULT_ESTIMATES",
    "GeneticOptimizer",
    "OPTIMIZATION_WEIGHTS",
    "OptimizationMetrics",
    "OptimizationPlan",
    "OptimizationTarget",
    "ParallelGroup",
    "PlanRepair",
    "PlanRepairer",
    "PlanningProblem",
    "Strategy",
    "WorkflowOptimizer",
    "critical_path",
    "dynamic_programming",
    "estimate_steps",
    "greedy_cost",
    "greedy_time",
    "sequential",
    "validate_plan",
]
