"""Interchangeable plan optimization strategies.

Every strategy returns ``ordered_steps`` in an order that respects
dependencies, which the engine can execute as is. ``parallel_groups`` are
timing estimates and need not cover every step (critical path groups hold
only the off-path steps).
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..constants import (
    DP_MAX_STEPS,
    FITNESS_COST_CEILING,
    FITNESS_TIME_CEILING_MS,
    GENETIC_GENERATIONS,
    GENETIC_MUTATION_RATE,
    GENETIC_POPULATION_SIZE,
)
from ..contracts import StepEstimate, WorkflowDefinition
from ..graph import can_run_in_parallel, is_valid_order, topological_order, transitive_closure
from .estimates import estimate_steps, group_time, reliability, staged_time, total_cost
from .models import (
    Constraints,
    OptimizationPlan,
    OptimizationTarget,
    ParallelGroup,
    Strategy,
)

logger = logging.getLogger(__name__)

OPTIMIZATION_WEIGHTS: Dict[OptimizationTarget, Dict[str, float]] = {
    OptimizationTarget.SPEED: {"time": 0.7, "cost": 0.1, "reliability": 0.2},
    OptimizationTarget.COST: {"time": 0.2, "cost": 0.6, "reliability": 0.2},
    OptimizationTarget.RELIABILITY: {"time": 0.2, "cost": 0.2, "reliability": 0.6},
    OptimizationTarget.BALANCED: {"time": 0.4, "cost": 0.3, "reliability": 0.3},
}


@dataclass
class PlanningProblem:
    """Everything a strategy needs to know about one workflow."""

    workflow_id: str
    step_ids: List[str]
    deps: Dict[str, List[str]]
    estimates: Dict[str, StepEstimate]
    target: OptimizationTarget = OptimizationTarget.BALANCED
    _positions: Dict[str, int] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self._positions = {s: i for i, s in enumerate(self.step_ids)}

    @classmethod
    def from_definition(
        cls,
        definition: WorkflowDefinition,
        target: OptimizationTarget = OptimizationTarget.BALANCED,
    ) -> "PlanningProblem":
        return cls(
            workflow_id=definition.id,
            step_ids=definition.step_ids,
            deps=definition.dependencies,
            estimates=estimate_steps(definition),
            target=target,
        )

    def time(self, step_id: str) -> float:
        return self.estimates[step_id].time_ms

    def cost(self, step_id: str) -> float:
        return self.estimates[step_id].cost

    def position(self, step_id: str) -> int:
        return self._positions[step_id]

    def is_ready(self, step_id: str, placed: Set[str]) -> bool:
        return all(dep in placed for dep in self.deps.get(step_id, ()))


def build_plan(
    problem: PlanningProblem,
    strategy: Strategy,
    groups: Sequence[List[str]],
    ordered: Optional[List[str]] = None,
    estimated_time: Optional[float] = None,
    estimated_cost: Optional[float] = None,
    **extra,
) -> OptimizationPlan:
    """Assemble an :class:`OptimizationPlan` from stage groups."""
    ordered = list(ordered) if ordered is not None else [s for g in groups for s in g]
    return OptimizationPlan(
        workflow_id=problem.workflow_id,
        strategy=strategy,
        target=problem.target,
        ordered_steps=ordered,
        parallel_groups=[
            ParallelGroup(operations=list(g), estimated_time=group_time(g, problem.estimates))
            for g in groups
        ],
        estimated_time=(
            staged_time(groups, problem.estimates) if estimated_time is None else estimated_time
        ),
        estimated_cost=(
            total_cost(ordered, problem.estimates) if estimated_cost is None else estimated_cost
        ),
        estimated_reliability=reliability(ordered, problem.estimates),
        **extra,
    )


def pack_parallel_groups(
    operations: Sequence[str], deps: Dict[str, List[str]], max_parallel: int
) -> List[List[str]]:
    """Pack ``operations`` into groups of mutually independent steps.

    Operations are taken in the given order, which must respect dependencies;
    a step is only pulled forward into a group when no dependency path joins
    it with any member and its own prerequisites were already placed.
    """
    groups: List[List[str]] = []
    remaining = list(operations)
    while remaining:
        group = [remaining.pop(0)]
        for candidate in list(remaining):
            if len(group) >= max_parallel:
                break
            if any(d in remaining for d in deps.get(candidate, ())):
                continue
            if can_run_in_parallel(candidate, group, deps):
                group.append(candidate)
                remaining.remove(candidate)
        groups.append(group)
    return groups


def sequential(problem: PlanningProblem, constraints: Constraints) -> OptimizationPlan:
    """Unoptimized baseline: topological order, one step at a time."""
    order = topological_order(problem.step_ids, problem.deps)
    return build_plan(problem, Strategy.SEQUENTIAL, [[s] for s in order])


def greedy_time(problem: PlanningProblem, constraints: Constraints) -> OptimizationPlan:
    """Fastest steps first, batched into the current group while independent."""
    pending = sorted(problem.step_ids, key=lambda s: (problem.time(s), problem.position(s)))
    placed: Set[str] = set()
    groups: List[List[str]] = []
    current: List[str] = []

    while pending:
        step = next(s for s in pending if problem.is_ready(s, placed))
        pending.remove(step)
        if (
            current
            and len(current) < constraints.max_parallel_operations
            and can_run_in_parallel(step, current, problem.deps)
        ):
            current.append(step)
        else:
            if current:
                groups.append(current)
            current = [step]
        placed.add(step)
    if current:
        groups.append(current)

    return build_plan(problem, Strategy.GREEDY_TIME, groups)


def greedy_cost(problem: PlanningProblem, constraints: Constraints) -> OptimizationPlan:
    """Cheapest steps first; only mutually independent ready steps share a group.

    Parallelism never lowers the declared cost, only the estimated time.
    """
    pending = sorted(problem.step_ids, key=lambda s: (problem.cost(s), problem.position(s)))
    placed: Set[str] = set()
    groups: List[List[str]] = []

    while pending:
        ready = [s for s in pending if problem.is_ready(s, placed)]
        group = [ready[0]]
        for candidate in ready[1:]:
            if len(group) >= constraints.max_parallel_operations:
                break
            if can_run_in_parallel(candidate, group, problem.deps):
                group.append(candidate)
        for step in group:
            pending.remove(step)
        placed.update(group)
        groups.append(group)

    return build_plan(problem, Strategy.GREEDY_COST, groups)


def critical_path_of(
    problem: PlanningProblem, order: Sequence[str]
) -> Tuple[List[str], float]:
    """Longest dependency-weighted chain among ``order`` and its duration."""
    if not order:
        return [], 0.0
    members = set(order)
    finish: Dict[str, float] = {}
    for step in order:
        prior = [finish[d] for d in problem.deps.get(step, ()) if d in members]
        finish[step] = problem.time(step) + max(prior, default=0.0)

    end = max(order, key=lambda s: (finish[s], -problem.position(s)))
    path = [end]
    while True:
        prior = [d for d in problem.deps.get(path[-1], ()) if d in members]
        if not prior:
            break
        path.append(max(prior, key=lambda d: (finish[d], -problem.position(d))))
    path.reverse()
    return path, finish[end]


def critical_path(problem: PlanningProblem, constraints: Constraints) -> OptimizationPlan:
    """Order by longest-ready-first and pack off-path steps into parallel groups."""
    order: List[str] = []
    placed: Set[str] = set()
    remaining = list(problem.step_ids)
    while remaining:
        available = [s for s in remaining if problem.is_ready(s, placed)]
        chosen = max(available, key=lambda s: (problem.time(s), -problem.position(s)))
        order.append(chosen)
        placed.add(chosen)
        remaining.remove(chosen)

    path, path_time = critical_path_of(problem, order)
    average = path_time / len(path) if path else 0.0
    bottlenecks = [s for s in path if problem.time(s) > average * 1.5]

    off_path = [s for s in order if s not in path]
    groups = pack_parallel_groups(off_path, problem.deps, constraints.max_parallel_operations)
    parallel_time = max((group_time(g, problem.estimates) for g in groups), default=0.0)

    return build_plan(
        problem,
        Strategy.CRITICAL_PATH,
        groups,
        ordered=order,
        estimated_time=max(path_time, parallel_time),
        critical_path=path,
        bottlenecks=bottlenecks,
        details={"critical_path_time": path_time, "parallel_time": parallel_time},
    )


# Nodes of a DP solution tree: ("step", id) | ("seq", first, second) | ("par", a, b)
_Node = Tuple


def _stages(node: _Node) -> List[List[str]]:
    kind = node[0]
    if kind == "step":
        return [[node[1]]]
    first, second = _stages(node[1]), _stages(node[2])
    if kind == "seq":
        return first + second
    return [
        (first[i] if i < len(first) else []) + (second[i] if i < len(second) else [])
        for i in range(max(len(first), len(second)))
    ]


def dynamic_programming(
    problem: PlanningProblem, constraints: Constraints, max_steps: int = DP_MAX_STEPS
) -> OptimizationPlan:
    """Optimal split search over every subset of steps.

    Each subset's best solution combines the best solutions of two halves,
    run in parallel when no dependency joins them and in sequence otherwise,
    scored by ``cost + time / 1000``. Exponential, so bounded to small
    workflows.
    """
    ids = problem.step_ids
    n = len(ids)
    if n > max_steps:
        raise ValueError(
            f"dynamic programming supports at most {max_steps} steps, got {n}"
        )
    if n == 0:
        return build_plan(problem, Strategy.DYNAMIC_PROGRAMMING, [])

    closure = transitive_closure(problem.deps)
    bits = {i: ids[i] for i in range(n)}

    def members(mask: int) -> List[str]:
        return [bits[i] for i in range(n) if mask >> i & 1]

    def depends_on(a: int, b: int) -> bool:
        targets = set(members(b))
        return any(closure[s] & targets for s in members(a))

    best: Dict[int, Tuple[float, float, float, _Node]] = {}
    for i, step in bits.items():
        cost, time = problem.cost(step), problem.time(step)
        best[1 << i] = (cost + time / 1000, cost, time, ("step", step))

    masks = sorted(range(1, 1 << n), key=lambda m: (bin(m).count("1"), m))
    for mask in masks:
        if mask in best:
            continue
        low = mask & -mask
        chosen: Optional[Tuple[float, float, float, _Node]] = None
        sub = (mask - 1) & mask
        while sub:
            if sub & low:
                left, right = sub, mask ^ sub
                _, left_cost, left_time, left_node = best[left]
                _, right_cost, right_time, right_node = best[right]
                left_after = depends_on(left, right)
                right_after = depends_on(right, left)
                if not left_after and not right_after:
                    node: _Node = ("par", left_node, right_node)
                    time = max(left_time, right_time)
                elif left_after and right_after:
                    sub = (sub - 1) & mask
                    continue
                else:
                    node = (
                        ("seq", right_node, left_node)
                        if left_after
                        else ("seq", left_node, right_node)
                    )
                    time = left_time + right_time
                cost = left_cost + right_cost
                score = cost + time / 1000
                if chosen is None or score < chosen[0]:
                    chosen = (score, cost, time, node)
            sub = (sub - 1) & mask
        if chosen is not None:
            best[mask] = chosen

    score, cost, time, root = best[(1 << n) - 1]
    # Parallel halves are zipped stage by stage, so the emitted groups can
    # take longer than the split score assumed; report the groups' time.
    groups = _stages(root)
    return build_plan(
        problem,
        Strategy.DYNAMIC_PROGRAMMING,
        groups,
        estimated_cost=cost,
        details={"score": score, "split_time": time, "parallelizable": root[0] == "par"},
    )


class GeneticOptimizer:
    """Small genetic search over dependency-respecting orderings.

    An individual is an ordering plus a chunk size that controls how
    consecutive independent steps are batched. Fitness is a weighted sum of
    normalized time, cost and reliability scores.
    """

    def __init__(
        self,
        population_size: int = GENETIC_POPULATION_SIZE,
        generations: int = GENETIC_GENERATIONS,
        mutation_rate: float = GENETIC_MUTATION_RATE,
        seed: Optional[int] = None,
    ) -> None:
        self.population_size = max(2, population_size)
        self.generations = generations
        self.mutation_rate = mutation_rate
        self._rng = random.Random(seed)

    def random_order(self, problem: PlanningProblem) -> List[str]:
        placed: Set[str] = set()
        remaining = list(problem.step_ids)
        order: List[str] = []
        while remaining:
            ready = [s for s in remaining if problem.is_ready(s, placed)]
            step = self._rng.choice(ready)
            order.append(step)
            placed.add(step)
            remaining.remove(step)
        return order

    @staticmethod
    def stage(
        order: Sequence[str], chunk: int, problem: PlanningProblem, max_parallel: int
    ) -> List[List[str]]:
        limit = max(1, min(chunk, max_parallel))
        groups: List[List[str]] = []
        current: List[str] = []
        for step in order:
            if current and (
                len(current) >= limit or not can_run_in_parallel(step, current, problem.deps)
            ):
                groups.append(current)
                current = []
            current.append(step)
        if current:
            groups.append(current)
        return groups

    def fitness(
        self,
        individual: Tuple[List[str], int],
        problem: PlanningProblem,
        constraints: Constraints,
    ) -> float:
        order, chunk = individual
        groups = self.stage(order, chunk, problem, constraints.max_parallel_operations)
        weights = OPTIMIZATION_WEIGHTS.get(
            problem.target, OPTIMIZATION_WEIGHTS[OptimizationTarget.BALANCED]
        )
        time_score = 1 - staged_time(groups, problem.estimates) / FITNESS_TIME_CEILING_MS
        cost_score = 1 - total_cost(order, problem.estimates) / FITNESS_COST_CEILING
        reliability_score = reliability(order, problem.estimates)
        return (
            weights["time"] * time_score
            + weights["cost"] * cost_score
            + weights["reliability"] * reliability_score
        )

    def crossover(
        self, first: Tuple[List[str], int], second: Tuple[List[str], int]
    ) -> Tuple[List[str], int]:
        point = self._rng.randint(0, len(first[0]))
        prefix = first[0][:point]
        taken = set(prefix)
        child = prefix + [s for s in second[0] if s not in taken]
        return child, self._rng.choice([first[1], second[1]])

    def mutate(
        self, individual: Tuple[List[str], int], problem: PlanningProblem
    ) -> Tuple[List[str], int]:
        order, chunk = individual
        if len(order) < 2:
            return individual
        i, j = self._rng.randrange(len(order)), self._rng.randrange(len(order))
        swapped = list(order)
        swapped[i], swapped[j] = swapped[j], swapped[i]
        if is_valid_order(swapped, problem.deps):
            return swapped, chunk
        return order, chunk

    def optimize(self, problem: PlanningProblem, constraints: Constraints) -> OptimizationPlan:
        if not problem.step_ids:
            return build_plan(problem, Strategy.GENETIC_BALANCED, [])
        max_parallel = constraints.max_parallel_operations
        population = [
            (self.random_order(problem), self._rng.randint(1, max_parallel))
            for _ in range(self.population_size)
        ]

        def ranked(pop):
            return sorted(
                pop, key=lambda ind: self.fitness(ind, problem, constraints), reverse=True
            )

        for _ in range(self.generations):
            selected = ranked(population)[: max(1, self.population_size // 2)]
            population = list(selected)
            while len(population) < self.population_size:
                child = self.crossover(
                    self._rng.choice(selected), self._rng.choice(selected)
                )
                if self._rng.random() < self.mutation_rate:
                    child = self.mutate(child, problem)
                population.append(child)

        best = ranked(population)[0]
        best_fitness = self.fitness(best, problem, constraints)
        groups = self.stage(best[0], best[1], problem, max_parallel)
        return build_plan(
            problem,
            Strategy.GENETIC_BALANCED,
            groups,
            details={
                "generations": self.generations,
                "population_size": self.population_size,
                "best_fitness": best_fitness,
            },
        )
