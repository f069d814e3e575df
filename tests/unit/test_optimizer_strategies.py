"""Tests for the individual optimization strategies."""

import pytest

from flowforge.contracts import StepEstimate, StepSpec, WorkflowDefinition
from flowforge.graph import can_run_in_parallel, is_valid_order
from flowforge.optimizer import (
    Constraints,
    GeneticOptimizer,
    PlanningProblem,
    Strategy,
    critical_path,
    dynamic_programming,
    greedy_cost,
    greedy_time,
    sequential,
)
from flowforge.optimizer.estimates import staged_time


def _workflow(steps, workflow_id="wf"):
    """Build a workflow from ``{id: (time_ms, cost, deps)}``."""
    return WorkflowDefinition(
        id=workflow_id,
        steps=[
            StepSpec(
                id=step_id,
                type="single_call",
                dependencies=deps,
                estimate=StepEstimate(time_ms=time_ms, cost=cost, reliability=0.99),
            )
            for step_id, (time_ms, cost, deps) in steps.items()
        ],
    )


def _problem(steps):
    return PlanningProblem.from_definition(_workflow(steps))


def _assert_groups_independent(plan, problem):
    for group in plan.parallel_groups:
        for step in group.operations:
            others = [s for s in group.operations if s != step]
            assert can_run_in_parallel(step, others, problem.deps) or not others


def test_greedy_time_groups_independent_steps():
    problem = _problem({"a": (1000, 1, []), "b": (2000, 1, []), "c": (1500, 1, [])})
    plan = greedy_time(problem, Constraints(max_parallel_operations=3))

    assert plan.strategy == Strategy.GREEDY_TIME
    assert len(plan.parallel_groups) == 1
    assert set(plan.parallel_groups[0].operations) == {"a", "b", "c"}
    assert plan.estimated_time == 2000


def test_greedy_time_respects_dependencies():
    problem = _problem({"a": (300, 1, []), "b": (100, 1, ["a"]), "c": (200, 1, [])})
    plan = greedy_time(problem, Constraints())

    assert [g.operations for g in plan.parallel_groups] == [["c", "a"], ["b"]]
    assert plan.estimated_time == 400
    assert is_valid_order(plan.ordered_steps, problem.deps)
    _assert_groups_independent(plan, problem)


def test_greedy_time_caps_group_size():
    problem = _problem({s: (100, 1, []) for s in "abcde"})
    plan = greedy_time(problem, Constraints(max_parallel_operations=2))
    assert plan.max_group_size == 2
    assert [len(g.operations) for g in plan.parallel_groups] == [2, 2, 1]


def test_greedy_cost_orders_by_cost_and_sums_costs():
    problem = _problem(
        {"a": (100, 3, []), "b": (100, 1, []), "c": (100, 2, ["b"]), "d": (100, 4, [])}
    )
    plan = greedy_cost(problem, Constraints(max_parallel_operations=2))

    assert plan.parallel_groups[0].operations == ["b", "a"]
    assert plan.estimated_cost == 10
    assert is_valid_order(plan.ordered_steps, problem.deps)
    assert plan.max_group_size <= 2
    _assert_groups_independent(plan, problem)


def test_critical_path_finds_longest_chain_and_bottleneck():
    problem = _problem(
        {
            "a": (1000, 1, []),
            "b": (3000, 1, ["a"]),
            "c": (200, 1, []),
            "d": (500, 1, ["b"]),
        }
    )
    plan = critical_path(problem, Constraints())

    assert plan.ordered_steps == ["a", "b", "d", "c"]
    assert plan.critical_path == ["a", "b", "d"]
    assert plan.bottlenecks == ["b"]
    assert plan.estimated_time == 4500
    assert [g.operations for g in plan.parallel_groups] == [["c"]]
    assert plan.details["critical_path_time"] == 4500


def test_dynamic_programming_runs_independent_steps_in_parallel():
    problem = _problem({"x": (500, 2, []), "y": (700, 3, [])})
    plan = dynamic_programming(problem, Constraints())

    assert plan.estimated_cost == 5
    assert plan.estimated_time == 700
    assert [g.operations for g in plan.parallel_groups] == [["x", "y"]]
    assert plan.details["parallelizable"] is True


def test_dynamic_programming_sequences_dependent_steps():
    problem = _problem({"x": (500, 2, []), "y": (700, 3, ["x"])})
    plan = dynamic_programming(problem, Constraints())

    assert plan.estimated_time == 1200
    assert [g.operations for g in plan.parallel_groups] == [["x"], ["y"]]
    assert plan.ordered_steps == ["x", "y"]


def test_dynamic_programming_is_deterministic_and_valid():
    steps = {
        "a": (300, 1, []),
        "b": (200, 2, ["a"]),
        "c": (400, 1, []),
        "d": (100, 1, ["b", "c"]),
        "e": (250, 2, []),
    }
    problem = _problem(steps)
    first = dynamic_programming(problem, Constraints())
    second = dynamic_programming(_problem(steps), Constraints())

    assert first.ordered_steps == second.ordered_steps
    assert first.estimated_time == second.estimated_time
    assert sorted(first.ordered_steps) == sorted(steps)
    assert is_valid_order(first.ordered_steps, problem.deps)
    _assert_groups_independent(first, problem)


def test_dynamic_programming_refuses_large_workflows():
    problem = _problem({f"s{i}": (100, 1, []) for i in range(9)})
    with pytest.raises(ValueError):
        dynamic_programming(problem, Constraints(), max_steps=8)


def test_genetic_is_reproducible_with_seed():
    steps = {
        "a": (300, 1, []),
        "b": (200, 2, ["a"]),
        "c": (400, 1, []),
        "d": (100, 1, ["b", "c"]),
        "e": (250, 2, []),
        "f": (500, 1, ["e"]),
        "g": (150, 1, []),
    }
    problem = _problem(steps)
    first = GeneticOptimizer(seed=7).optimize(problem, Constraints())
    second = GeneticOptimizer(seed=7).optimize(problem, Constraints())

    assert first.ordered_steps == second.ordered_steps
    assert [g.operations for g in first.parallel_groups] == [
        g.operations for g in second.parallel_groups
    ]
    assert sorted(first.ordered_steps) == sorted(steps)
    assert is_valid_order(first.ordered_steps, problem.deps)
    assert first.max_group_size <= Constraints().max_parallel_operations
    _assert_groups_independent(first, problem)


def test_genetic_operators_keep_orders_valid():
    problem = _problem({"a": (1, 1, []), "b": (1, 1, ["a"]), "c": (1, 1, ["b"]), "d": (1, 1, [])})
    genetic = GeneticOptimizer(seed=1)
    for _ in range(20):
        first = (genetic.random_order(problem), 2)
        second = (genetic.random_order(problem), 3)
        child = genetic.crossover(first, second)
        assert is_valid_order(child[0], problem.deps)
        assert is_valid_order(genetic.mutate(child, problem)[0], problem.deps)


def test_sequential_baseline():
    problem = _problem({"a": (100, 1, []), "b": (200, 2, ["a"])})
    plan = sequential(problem, Constraints())
    assert plan.ordered_steps == ["a", "b"]
    assert plan.estimated_time == 300
    assert plan.estimated_cost == 3
    assert plan.estimated_reliability == pytest.approx(0.99 * 0.99)


def test_greedy_time_only_batches_into_current_group():
    problem = _problem({"a": (100, 1, []), "b": (200, 1, ["a"]), "c": (300, 1, [])})
    plan = greedy_time(problem, Constraints())

    # c is independent of a, but a's group was closed once b had to wait for it
    assert [g.operations for g in plan.parallel_groups] == [["a"], ["b", "c"]]
    assert plan.estimated_time == 400


def test_dynamic_programming_reports_time_of_its_groups():
    # Two chains of opposite shape: zipping their stages costs more than either chain
    problem = _problem(
        {"a": (1000, 1, []), "b": (10, 1, ["a"]), "c": (10, 1, []), "d": (1000, 1, ["c"])}
    )
    plan = dynamic_programming(problem, Constraints())

    groups = [g.operations for g in plan.parallel_groups]
    assert groups == [["a", "c"], ["b", "d"]]
    assert plan.estimated_time == staged_time(groups, problem.estimates) == 2000
    assert plan.details["split_time"] == 1010
    assert plan.estimated_cost == 4


@pytest.mark.parametrize("strategy", [greedy_time, greedy_cost, critical_path, dynamic_programming])
def test_deterministic_strategies_are_idempotent(strategy):
    steps = {
        "a": (300, 1, []),
        "b": (200, 2, ["a"]),
        "c": (400, 1, []),
        "d": (100, 1, ["b", "c"]),
        "e": (250, 2, []),
        "f": (50, 3, ["e"]),
    }
    constraints = Constraints(max_parallel_operations=2)
    first = strategy(_problem(steps), constraints)
    second = strategy(_problem(steps), constraints)

    assert first.model_dump() == second.model_dump()
