"""Parallel-call-group execution tests."""

import asyncio

import pytest

from flowforge import (
    ExecutionOptions,
    StepHandlerRegistry,
    StepType,
    WorkflowCatalog,
    WorkflowEngine,
)
from flowforge.config import FlowforgeConfig
from flowforge.errors import StepExecutionError

ACCOUNTS = [{"id": "acc1"}, {"id": "acc2"}, {"id": "acc3"}, {"id": "acc4"}]


def _workflow(source="accounts", **group):
    return {
        "id": "summary",
        "steps": [
            {"id": "accounts", "type": "single_call"},
            {
                "id": "transactions",
                "type": "parallel_call_group",
                "source": source,
                "dependencies": ["accounts"],
                **group,
            },
        ],
        "error_handling": {},
    }


def _engine(workflow, unit_handler, config=None):
    handlers = StepHandlerRegistry()

    @handlers.handler(StepType.SINGLE_CALL)
    async def accounts(step, ctx):
        return ACCOUNTS

    handlers.register(StepType.PARALLEL_CALL_GROUP, unit_handler)
    return WorkflowEngine(catalog=WorkflowCatalog([workflow]), handlers=handlers, config=config)


@pytest.mark.asyncio
async def test_units_fan_out_with_bounded_concurrency():
    running = 0
    peak = 0

    async def fetch(step, ctx):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        # Later units finish first; results still come back in input order
        await asyncio.sleep(0.01 * (5 - int(ctx.unit_id[-1])))
        running -= 1
        return {"account": ctx.unit["id"], "transactions": []}

    engine = _engine(_workflow(), fetch)
    result = await engine.execute_workflow(
        "summary", options=ExecutionOptions(max_parallel_operations=2)
    )

    assert result.success
    assert [item["id"] for item in result.result] == ["acc1", "acc2", "acc3", "acc4"]
    assert result.result[0] == {
        "id": "acc1",
        "data": {"account": "acc1", "transactions": []},
        "from_cache": False,
    }
    assert peak == 2
    state = engine.get_execution(result.execution_id)
    assert state.step_results["transactions"].metadata["total_calls"] == 4


@pytest.mark.asyncio
async def test_config_limits_concurrency_by_default():
    running = 0
    peak = 0

    async def fetch(step, ctx):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return ctx.unit_id

    config = FlowforgeConfig.model_validate({"engine": {"max_parallel_operations": 3}})
    result = await _engine(_workflow(), fetch, config).execute_workflow("summary")
    assert result.success
    assert peak == 3


@pytest.mark.asyncio
async def test_units_from_context_list():
    seen = []

    async def fetch(step, ctx):
        seen.append(ctx.unit_id)
        return {"unit": ctx.unit}

    engine = _engine(_workflow(source="account_ids"), fetch)
    result = await engine.execute_workflow("summary", {"account_ids": ["x1", "x2"]})

    assert sorted(seen) == ["x1", "x2"]
    assert result.result[1] == {"id": "x2", "data": {"unit": {"id": "x2"}}, "from_cache": False}


@pytest.mark.asyncio
async def test_first_unit_failure_fails_the_step():
    async def fetch(step, ctx):
        if ctx.unit_id == "acc2":
            return {"success": False, "error": "account locked"}
        await asyncio.sleep(0.02)
        return ctx.unit_id

    engine = _engine(_workflow(), fetch)
    with pytest.raises(StepExecutionError) as exc:
        await engine.execute_workflow("summary")

    assert exc.value.step_id == "transactions"
    assert "acc2" in str(exc.value)
    assert "account locked" in str(exc.value)
    assert exc.value.completed_steps == ["accounts"]


@pytest.mark.asyncio
async def test_unit_failure_honours_retry_policy():
    async def fetch(step, ctx):
        raise TimeoutError("slow upstream")

    workflow = _workflow()
    workflow["error_handling"] = {"retry_on": ["transactions"]}
    result = await _engine(workflow, fetch).execute_workflow("summary")

    assert result.retry_requested
    assert result.failed_step == "transactions"
    assert "slow upstream" in result.error


@pytest.mark.asyncio
async def test_missing_source_fails_the_step():
    async def fetch(step, ctx):
        return ctx.unit_id

    engine = _engine(_workflow(source="nowhere"), fetch)
    with pytest.raises(StepExecutionError, match="source data for parallel calls not found"):
        await engine.execute_workflow("summary")


@pytest.mark.asyncio
async def test_cacheable_units_are_cached_individually():
    calls = []

    async def fetch(step, ctx):
        calls.append(ctx.unit_id)
        return {"account": ctx.unit_id}

    engine = _engine(
        _workflow(cacheable=True, cache={"key_pattern": "transactions:{start_date}"}), fetch
    )
    first = await engine.execute_workflow("summary", {"start_date": "2024-01-01"})
    second = await engine.execute_workflow("summary", {"start_date": "2024-01-01"})

    assert len(calls) == 4
    assert all(item["from_cache"] for item in second.result)
    assert [item["data"] for item in second.result] == [item["data"] for item in first.result]
    state = engine.get_execution(second.execution_id)
    assert state.step_results["transactions"].metadata["cache_hits"] == 4
    assert engine.get_stats().metrics.cache_hits == 4
