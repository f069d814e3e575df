"""Example showing how to run workflows with the WorkflowEngine."""

import asyncio
from pathlib import Path

from flowforge import (
    CompensationRegistry,
    ExecutionOptions,
    FlowforgeError,
    StepHandlerRegistry,
    StepResult,
    StepType,
    WorkflowCatalog,
    WorkflowEngine,
    load_config,
)
from flowforge.utils.logging import configure_logging

WORKFLOWS = Path(__file__).parent / "workflows"

handlers = StepHandlerRegistry()


@handlers.handler(StepType.AUTHENTICATION)
async def authenticate(step, ctx):
    if not ctx.context.get("access_token"):
        return StepResult(success=False, error="access token missing")
    return StepResult(result={"authenticated": True}, context_updates={"user_id": "user-1"})


@handlers.handler(StepType.SINGLE_CALL)
async def single_call(step, ctx):
    if step.operation == "get_accounts":
        return [{"id": "checking001", "type": "checking"}, {"id": "savings002", "type": "savings"}]
    if step.operation == "create_transfer":
        return StepResult(
            result={"transfer_id": "tx-1"},
            rollback_data={"transfer_id": "tx-1"},
        )
    return {"operation": step.operation, "parameters": ctx.collect_parameters(step)}


@handlers.handler(StepType.PARALLEL_CALL_GROUP)
async def fetch_unit(step, ctx):
    await asyncio.sleep(0.01)
    return {"account_id": ctx.unit_id, "transactions": []}


@handlers.handler(StepType.VALIDATION)
async def validate(step, ctx):
    return {"rules": step.options.get("rules", []), "valid": True}


@handlers.handler(StepType.COMPUTATION)
async def compute(step, ctx):
    return {name: 0 for name in step.options.get("computations", [])}


@handlers.handler(StepType.REPORT_GENERATION)
async def report(step, ctx):
    return {"format": step.options.get("format", "summary"), "sections": list(ctx.step_results)}


async def main():
    config = load_config()
    configure_logging(config.log_level)

    catalog = WorkflowCatalog()
    catalog.load_directory(WORKFLOWS)

    compensations = CompensationRegistry()
    compensations.register(
        StepType.SINGLE_CALL, lambda entry: print(f"Reversing {entry.rollback_data}")
    )

    engine = WorkflowEngine(
        catalog=catalog, handlers=handlers, compensations=compensations, config=config
    )

    plan = engine.optimize_workflow("monthly_summary", strategy="speed")
    print(f"Plan ({plan.strategy.value}): {plan.ordered_steps}")
    result = await engine.execute_workflow(
        "monthly_summary",
        {"access_token": "secret", "start_date": "2024-01-01", "end_date": "2024-01-31"},
        ExecutionOptions(plan=plan),
    )
    print(f"monthly_summary -> {result.status.value}: {result.result}")

    result = await engine.execute_workflow(
        "transaction_export", {"account_ids": ["checking001", "savings002"]}
    )
    print(f"transaction_export -> {result.status.value}: {result.result}")

    # Missing transfer details pause the run for user input
    result = await engine.execute_workflow(
        "transfer_funds", {"access_token": "secret", "from_account_id": "checking001"}
    )
    print(f"transfer_funds -> {result.status.value}: {result.prompt}")

    # A failing authenticate step is turned into a prompt by the workflow policy
    result = await engine.execute_workflow("transfer_funds", {})
    print(f"transfer_funds -> {result.status.value}: {result.error}")

    try:
        await engine.execute_workflow("unknown_workflow")
    except FlowforgeError as e:
        print(f"Error: {e}")

    print(engine.get_stats().model_dump_json(indent=2))


if __name__ == "__main__":
    asyncio.run(main())
