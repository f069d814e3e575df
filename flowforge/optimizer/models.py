"""Pydantic models describing optimization inputs and plans."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..config import ConstraintsConfig
from ..constants import (
    DEFAULT_MAX_EXECUTION_TIME_MS,
    DEFAULT_MAX_PARALLEL_OPERATIONS,
    DEFAULT_MAX_TOTAL_COST,
    DEFAULT_MIN_RELIABILITY,
)


class OptimizationTarget(str, Enum):
    SPEED = "speed"
    COST = "cost"
    RELIABILITY = "reliability"
    BALANCED = "balanced"


class Strategy(str, Enum):
    GREEDY_TIME = "greedy_time"
    GREEDY_COST = "greedy_cost"
    CRITICAL_PATH = "critical_path"
    DYNAMIC_PROGRAMMING = "dynamic_programming"
    GENETIC_BALANCED = "genetic_balanced"
    SEQUENTIAL = "sequential"


class Constraints(BaseModel):
    """Limits an optimization plan has to respect."""

    max_parallel_operations: int = Field(default=DEFAULT_MAX_PARALLEL_OPERATIONS, ge=1)
    max_execution_time: float = Field(default=DEFAULT_MAX_EXECUTION_TIME_MS, gt=0)
    max_total_cost: float = Field(default=DEFAULT_MAX_TOTAL_COST, gt=0)
    min_reliability: float = Field(default=DEFAULT_MIN_RELIABILITY, ge=0, le=1)

    @classmethod
    def from_config(cls, config: ConstraintsConfig) -> "Constraints":
        return cls(**config.model_dump())


class ParallelGroup(BaseModel):
    """Steps scheduled to run concurrently."""

    operations: List[str]
    estimated_time: float = 0.0


class PlanRepair(BaseModel):
    """Record of a deterministic fix applied to a plan."""

    constraint: str
    action: str
    detail: str
    steps: List[str] = Field(default_factory=list)


class OptimizationMetrics(BaseModel):
    """Comparison against the unoptimized sequential plan."""

    time_improvement: float = 0.0
    cost_improvement: float = 0.0
    reliability_change: float = 0.0
    overall_improvement: float = 0.0
    parallelization_benefit: bool = False
    optimization_time_ms: float = 0.0


class OptimizationPlan(BaseModel):
    """Ordering and grouping produced by one optimization strategy."""

    workflow_id: str
    strategy: Strategy
    target: OptimizationTarget = OptimizationTarget.BALANCED
    ordered_steps: List[str] = Field(default_factory=list)
    parallel_groups: List[ParallelGroup] = Field(default_factory=list)
    estimated_time: float = 0.0
    estimated_cost: float = 0.0
    estimated_reliability: float = 1.0
    critical_path: List[str] = Field(default_factory=list)
    bottlenecks: List[str] = Field(default_factory=list)
    dropped_steps: List[str] = Field(default_factory=list)
    repairs: List[PlanRepair] = Field(default_factory=list)
    constraints: Optional[Constraints] = None
    metrics: Optional[OptimizationMetrics] = None
    fallback_used: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def repaired(self) -> bool:
        return bool(self.repairs)

    @property
    def max_group_size(self) -> int:
        return max((len(g.operations) for g in self.parallel_groups), default=0)
