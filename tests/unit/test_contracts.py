"""Tests for workflow and execution contracts."""

import pytest
from pydantic import ValidationError

from flowforge.contracts import (
    ErrorHandlingPolicy,
    ExecutionState,
    ExecutionStatus,
    StepResult,
    StepSpec,
    StepType,
    WorkflowDefinition,
    WorkflowSummary,
)


def test_step_type_is_closed():
    with pytest.raises(ValidationError):
        StepSpec(id="x", type="teleport")
    assert StepSpec(id="x", type="single_call").type is StepType.SINGLE_CALL


def test_definitions_are_immutable():
    step = StepSpec(id="a", type="computation")
    with pytest.raises(ValidationError):
        step.id = "b"


def test_error_handling_policy():
    policy = ErrorHandlingPolicy(retry_on=["fetch"], prompt_on=["login"])
    assert policy.should_retry("fetch")
    assert not policy.should_retry("login")
    assert policy.should_prompt("login")


def test_mark_complete_merges_context_and_pushes_rollback():
    state = ExecutionState(workflow_id="wf", context={"a": 1})
    first = StepSpec(id="first", type="single_call", rollbackable=True)
    second = StepSpec(id="second", type="computation", dependencies=["first"])

    assert state.missing_dependencies(second) == ["first"]
    state.mark_complete(
        first, StepResult(result=1, context_updates={"b": 2}, rollback_data={"id": "tx"})
    )
    state.mark_complete(second, StepResult(result=2))

    assert state.context == {"a": 1, "b": 2}
    assert state.completed_steps == ["first", "second"]
    assert state.missing_dependencies(second) == []
    assert len(state.rollback_stack) == 1
    entry = state.pop_rollback()
    assert entry.step_id == "first"
    assert entry.rollback_data == {"id": "tx"}
    assert state.pop_rollback() is None


def test_execution_ids_are_unique_and_finish_sets_status():
    first = ExecutionState(workflow_id="wf")
    second = ExecutionState(workflow_id="wf")
    assert first.execution_id != second.execution_id
    assert first.execution_id.startswith("exec_")

    first.finish(ExecutionStatus.FAILED, "boom")
    assert first.status == ExecutionStatus.FAILED
    assert first.error == "boom"
    assert first.finished_at is not None


def test_workflow_summary():
    definition = WorkflowDefinition(
        id="wf",
        name="Workflow",
        steps=[
            StepSpec(id="a", type="single_call", cacheable=True),
            StepSpec(id="b", type="single_call", rollbackable=True, dependencies=["a"]),
            StepSpec(id="c", type="delivery", dependencies=["b"]),
        ],
    )
    summary = WorkflowSummary.from_definition(definition)
    assert summary.step_count == 3
    assert summary.step_types == [StepType.SINGLE_CALL, StepType.DELIVERY]
    assert summary.cacheable_steps == 1
    assert summary.rollbackable_steps == 1
    assert definition.dependencies == {"a": [], "b": ["a"], "c": ["b"]}
    assert definition.get_step("missing") is None
