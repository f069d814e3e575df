"""Per-step time, cost and reliability estimates."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping

from ..contracts import StepEstimate, StepType, WorkflowDefinition

FALLBACK_ESTIMATE = StepEstimate()

# Planning defaults by step type (time in ms, abstract cost units)
DEFAULT_ESTIMATES: Dict[StepType, StepEstimate] = {
    StepType.AUTHENTICATION: StepEstimate(time_ms=300, cost=0.5, reliability=0.99),
    StepType.SINGLE_CALL: StepEstimate(time_ms=1000, cost=2, reliability=0.95),
    StepType.PARALLEL_CALL_GROUP: StepEstimate(time_ms=1500, cost=3, reliability=0.9),
    StepType.USER_INPUT: StepEstimate(time_ms=500, cost=0, reliability=0.99),
    StepType.VALIDATION: StepEstimate(time_ms=200, cost=0.5, reliability=0.99),
    StepType.COMPUTATION: StepEstimate(time_ms=400, cost=1, reliability=0.98),
    StepType.CONDITIONAL: StepEstimate(time_ms=300, cost=0.5, reliability=0.98),
    StepType.REPORT_GENERATION: StepEstimate(time_ms=1200, cost=2, reliability=0.95),
    StepType.CONFIRMATION: StepEstimate(time_ms=200, cost=0.5, reliability=0.99),
    StepType.FINALIZATION: StepEstimate(time_ms=200, cost=0.5, reliability=0.99),
    StepType.DATA_PROCESSING: StepEstimate(time_ms=800, cost=1.5, reliability=0.97),
    StepType.DELIVERY: StepEstimate(time_ms=600, cost=1, reliability=0.95),
}


def estimate_steps(definition: WorkflowDefinition) -> Dict[str, StepEstimate]:
    """Explicit ``step.estimate`` wins, then the type default, then the fallback."""
    return {
        step.id: step.estimate or DEFAULT_ESTIMATES.get(step.type, FALLBACK_ESTIMATE)
        for step in definition.steps
    }


def total_time(steps: Iterable[str], estimates: Mapping[str, StepEstimate]) -> float:
    return sum(estimates[s].time_ms for s in steps)


def total_cost(steps: Iterable[str], estimates: Mapping[str, StepEstimate]) -> float:
    return sum(estimates[s].cost for s in steps)


def reliability(steps: Iterable[str], estimates: Mapping[str, StepEstimate]) -> float:
    """Probability that every step succeeds, assuming independent failures."""
    value = 1.0
    for s in steps:
        value *= estimates[s].reliability
    return value


def group_time(group: List[str], estimates: Mapping[str, StepEstimate]) -> float:
    return max((estimates[s].time_ms for s in group), default=0.0)


def staged_time(groups: Iterable[List[str]], estimates: Mapping[str, StepEstimate]) -> float:
    """Groups run one after another; members of a group run concurrently."""
    return sum(group_time(g, estimates) for g in groups)
