import json
from pathlib import Path

from typer.testing import CliRunner

from flowforge.cli import app

GUIDE_WORKFLOWS = Path(__file__).parent.parent.parent / "guides" / "workflows"


def test_workflow_list_shows_all_definitions():
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "list", "--path", str(GUIDE_WORKFLOWS)])
    assert result.exit_code == 0, f"Command failed. Output: {result.stdout}"
    for workflow_id in ("transfer_funds", "monthly_summary", "transaction_export"):
        assert workflow_id in result.stdout


def test_workflow_list_empty_directory(tmp_path):
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "list", "--path", str(tmp_path)])
    assert result.exit_code == 0
    assert "No workflows found" in result.stdout


def test_workflow_list_missing_path(tmp_path):
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "list", "--path", str(tmp_path / "nope")])
    assert result.exit_code == 1
    assert "Specified path does not exist" in result.stdout


def test_workflow_list_rejects_cyclic_definitions(tmp_path):
    (tmp_path / "cyclic.yaml").write_text(
        """
id: cyclic
steps:
  - id: a
    type: computation
    dependencies: [b]
  - id: b
    type: computation
    dependencies: [a]
"""
    )
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "list", "--path", str(tmp_path)])
    assert result.exit_code == 1
    assert "cycle" in result.stdout


def test_workflow_show_details_and_missing():
    runner = CliRunner()
    result = runner.invoke(
        app, ["workflow", "show", "transfer_funds", "--path", str(GUIDE_WORKFLOWS)]
    )
    assert result.exit_code == 0, f"Command failed. Output: {result.stdout}"
    assert "Workflow transfer_funds: Transfer funds" in result.stdout
    assert "- execute_transfer (single_call) after: validate_transfer [rollbackable]" in result.stdout
    assert "Retry on: get_accounts, check_balance" in result.stdout

    missing = runner.invoke(app, ["workflow", "show", "missing-id", "--path", str(GUIDE_WORKFLOWS)])
    assert missing.exit_code == 1
    assert "Workflow not found" in missing.stdout


def test_workflow_optimize_prints_plan():
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "workflow",
            "optimize",
            "monthly_summary",
            "--path",
            str(GUIDE_WORKFLOWS),
            "--strategy",
            "critical_path",
        ],
    )
    assert result.exit_code == 0, f"Command failed. Output: {result.stdout}"
    assert "Workflow monthly_summary: critical_path" in result.stdout
    assert "Critical path:" in result.stdout


def test_workflow_optimize_json_with_constraints():
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "workflow",
            "optimize",
            "transaction_export",
            "--path",
            str(GUIDE_WORKFLOWS),
            "--max-parallel",
            "1",
            "--seed",
            "11",
            "--json",
        ],
    )
    assert result.exit_code == 0, f"Command failed. Output: {result.stdout}"
    plan = json.loads(result.stdout)
    assert plan["workflow_id"] == "transaction_export"
    assert plan["constraints"]["max_parallel_operations"] == 1
    assert all(len(group["operations"]) == 1 for group in plan["parallel_groups"])


def test_workflow_optimize_rejects_bad_strategy():
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["workflow", "optimize", "transfer_funds", "--path", str(GUIDE_WORKFLOWS), "--strategy", "magic"],
    )
    assert result.exit_code == 1
    assert "Optimization failed" in result.stdout
