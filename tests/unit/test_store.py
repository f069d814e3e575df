"""Tests for the execution arena."""

import time

import pytest

from flowforge.contracts import ExecutionState, ExecutionStatus
from flowforge.store import ExecutionStore


def test_lifecycle_moves_to_history():
    store = ExecutionStore()
    state = ExecutionState(workflow_id="wf")
    store.start(state)
    assert store.is_active(state.execution_id)
    assert store.active_count == 1

    with pytest.raises(ValueError):
        store.start(state)

    assert store.finish(state.execution_id) is state
    assert not store.is_active(state.execution_id)
    assert store.history_count == 1
    assert store.get(state.execution_id) is state
    assert store.finish("unknown") is None


def test_history_is_bounded():
    store = ExecutionStore(history_limit=2)
    states = [ExecutionState(workflow_id="wf") for _ in range(3)]
    for state in states:
        store.start(state)
        store.finish(state.execution_id)
    assert [s.execution_id for s in store.history()] == [
        states[1].execution_id,
        states[2].execution_id,
    ]
    assert store.get(states[0].execution_id) is None


def test_sweep_drops_expired_and_abandoned():
    store = ExecutionStore(history_ttl=10, abandon_after=10)
    done = ExecutionState(workflow_id="wf")
    store.start(done)
    store.finish(done.execution_id)
    stuck = ExecutionState(workflow_id="wf")
    store.start(stuck)

    assert store.sweep(now=time.monotonic()) == 0
    assert store.sweep(now=time.monotonic() + 11) == 2
    assert store.active_count == 0
    assert store.history_count == 0
    assert stuck.status == ExecutionStatus.FAILED
    assert stuck.error == "abandoned"


def test_sweep_keeps_running_executions_without_abandon_timeout():
    store = ExecutionStore(history_ttl=10)
    running = ExecutionState(workflow_id="wf")
    store.start(running)

    assert store.sweep(now=time.monotonic() + 1000) == 0
    assert store.is_active(running.execution_id)
    assert running.status == ExecutionStatus.RUNNING


def test_abandoned_execution_still_reaches_history_when_it_finishes():
    store = ExecutionStore(history_ttl=100, abandon_after=5)
    slow = ExecutionState(workflow_id="wf")
    store.start(slow)
    assert store.sweep(now=time.monotonic() + 6) == 1
    assert store.get(slow.execution_id) is None

    slow.finish(ExecutionStatus.COMPLETED)
    assert store.finish(slow.execution_id, slow) is slow
    assert store.get(slow.execution_id) is slow
    assert store.history_count == 1
