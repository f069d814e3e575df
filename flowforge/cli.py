"""Command line interface for inspecting and optimizing flowforge workflows."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError

from flowforge.catalog import WorkflowCatalog
from flowforge.config import FlowforgeConfig, load_config
from flowforge.errors import FlowforgeError, WorkflowNotFoundError
from flowforge.optimizer import Constraints, WorkflowOptimizer
from flowforge.utils.logging import configure_logging

app = typer.Typer(help="CLI for flowforge workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for inspecting and optimizing workflows")

app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
) -> None:
    """Flowforge CLI entry point."""
    configure_logging(log_level or load_config().log_level)


def _load_catalog(config: FlowforgeConfig, path: Optional[Path]) -> WorkflowCatalog:
    if path is None and config.workflows_path:
        path = Path(config.workflows_path)
    search_path = (path or Path.cwd()).expanduser().resolve()
    if not search_path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    catalog = WorkflowCatalog()
    try:
        if search_path.is_file():
            catalog.load_file(search_path)
        else:
            catalog.load_directory(search_path)
    except (FlowforgeError, yaml.YAMLError) as exc:
        typer.secho(f"Failed to load workflows: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return catalog


def _get_workflow(catalog: WorkflowCatalog, workflow_id: str):
    try:
        return catalog.get(workflow_id)
    except WorkflowNotFoundError:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)


@workflow_app.command("list")
def workflow_list(
    path: Optional[Path] = typer.Option(None, help="Workflow file or directory"),
) -> None:
    """
    List all workflow definitions found under a path.

    Example:
        flowforge workflow list --path ./workflows
        # Output: data_analysis    Data analysis    5 steps
    """
    catalog = _load_catalog(load_config(), path)
    summaries = catalog.list_summaries()
    if not summaries:
        typer.echo("No workflows found")
        return
    for summary in summaries:
        typer.echo(f"{summary.id}\t{summary.name or summary.id}\t{summary.step_count} steps")


@workflow_app.command("show")
def workflow_show(
    workflow_id: str,
    path: Optional[Path] = typer.Option(None, help="Workflow file or directory"),
) -> None:
    """
    Show the steps, dependencies and error policy of one workflow.

    Example:
        flowforge workflow show data_analysis
        # Output: Workflow data_analysis: Data analysis
        #         - fetch_data (single_call) [cacheable]
        #         - analyze (computation) after: fetch_data
    """
    workflow = _get_workflow(_load_catalog(load_config(), path), workflow_id)
    typer.echo(f"Workflow {workflow.id}: {workflow.name or workflow.id}")
    if workflow.description:
        typer.echo(workflow.description)
    for step in workflow.steps:
        flags = [f for f, on in (("cacheable", step.cacheable), ("rollbackable", step.rollbackable)) if on]
        line = f"- {step.id} ({step.type.value})"
        if step.dependencies:
            line += f" after: {', '.join(step.dependencies)}"
        if flags:
            line += f" [{', '.join(flags)}]"
        typer.echo(line)
    policy = workflow.error_handling
    if policy.retry_on:
        typer.echo(f"Retry on: {', '.join(policy.retry_on)}")
    if policy.prompt_on:
        typer.echo(f"Prompt on: {', '.join(policy.prompt_on)}")


@workflow_app.command("optimize")
def workflow_optimize(
    workflow_id: str,
    path: Optional[Path] = typer.Option(None, help="Workflow file or directory"),
    strategy: str = typer.Option(
        "balanced", help="Target (speed, cost, reliability, balanced) or strategy name"
    ),
    max_parallel: Optional[int] = typer.Option(None, help="Maximum parallel group size"),
    max_time: Optional[float] = typer.Option(None, help="Maximum execution time in ms"),
    max_cost: Optional[float] = typer.Option(None, help="Maximum total cost"),
    min_reliability: Optional[float] = typer.Option(None, help="Minimum plan reliability"),
    seed: Optional[int] = typer.Option(None, help="Seed for the genetic strategy"),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON"),
) -> None:
    """
    Build an optimization plan for a workflow.

    Example:
        flowforge workflow optimize data_analysis --strategy critical_path
        flowforge workflow optimize report --max-parallel 2 --json
    """
    config = load_config()
    workflow = _get_workflow(_load_catalog(config, path), workflow_id)

    optimizer_config = config.optimizer
    if seed is not None:
        optimizer_config = optimizer_config.model_copy(update={"seed": seed})
    optimizer = WorkflowOptimizer(optimizer_config)

    overrides = {
        "max_parallel_operations": max_parallel,
        "max_execution_time": max_time,
        "max_total_cost": max_cost,
        "min_reliability": min_reliability,
    }
    try:
        constraints = Constraints(
            **{
                **optimizer.default_constraints.model_dump(),
                **{k: v for k, v in overrides.items() if v is not None},
            }
        )
        plan = optimizer.optimize_workflow(workflow, constraints, strategy)
    except (ValidationError, ValueError) as exc:
        typer.secho(f"Optimization failed: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(plan.model_dump_json(indent=2))
        return

    typer.echo(f"Workflow {plan.workflow_id}: {plan.strategy.value}")
    typer.echo(f"Order: {' -> '.join(plan.ordered_steps)}")
    for index, group in enumerate(plan.parallel_groups, start=1):
        typer.echo(
            f"  Group {index}: {', '.join(group.operations)} ({group.estimated_time:.0f}ms)"
        )
    typer.echo(
        f"Estimated time: {plan.estimated_time:.0f}ms  cost: {plan.estimated_cost:g}  "
        f"reliability: {plan.estimated_reliability:.3f}"
    )
    if plan.critical_path:
        typer.echo(f"Critical path: {' -> '.join(plan.critical_path)}")
    if plan.bottlenecks:
        typer.echo(f"Bottlenecks: {', '.join(plan.bottlenecks)}")
    if plan.dropped_steps:
        typer.echo(f"Dropped: {', '.join(plan.dropped_steps)}")
    for repair in plan.repairs:
        typer.echo(f"Repair [{repair.constraint}] {repair.action}: {repair.detail}")
    if plan.fallback_used:
        typer.secho("Strategy failed; sequential fallback used", fg=typer.colors.YELLOW)
    if plan.metrics is not None:
        typer.echo(
            f"Improvement vs sequential: time {plan.metrics.time_improvement:.1f}%  "
            f"cost {plan.metrics.cost_improvement:.1f}%"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
