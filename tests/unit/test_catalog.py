"""Tests for workflow catalog loading and validation."""

from pathlib import Path

import pytest

from flowforge.catalog import WorkflowCatalog
from flowforge.errors import InvalidWorkflowError, WorkflowNotFoundError

GUIDE_WORKFLOWS = Path(__file__).parent.parent.parent / "guides" / "workflows"


def test_register_and_get():
    catalog = WorkflowCatalog()
    catalog.register(
        {
            "id": "wf",
            "name": "Workflow",
            "steps": [
                {"id": "a", "type": "computation"},
                {"id": "b", "type": "delivery", "dependencies": ["a"]},
            ],
        }
    )
    assert "wf" in catalog
    assert catalog.get("wf").step_ids == ["a", "b"]
    assert [s.id for s in catalog.list_summaries()] == ["wf"]

    catalog.remove("wf")
    with pytest.raises(WorkflowNotFoundError):
        catalog.get("wf")


def test_cyclic_workflow_rejected_at_load(tmp_path):
    path = tmp_path / "cyclic.yaml"
    path.write_text(
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
    catalog = WorkflowCatalog()
    with pytest.raises(InvalidWorkflowError):
        catalog.load_file(path)
    assert "cyclic" not in catalog


def test_schema_errors_become_invalid_workflow():
    catalog = WorkflowCatalog()
    with pytest.raises(InvalidWorkflowError) as exc:
        catalog.register({"id": "bad", "steps": [{"id": "a", "type": "teleport"}]})
    assert exc.value.workflow_id == "bad"


def test_load_file_with_workflow_list(tmp_path):
    path = tmp_path / "many.yml"
    path.write_text(
        """
workflows:
  - id: first
    steps:
      - id: a
        type: delivery
  - id: second
    steps:
      - id: a
        type: finalization
"""
    )
    loaded = WorkflowCatalog().load_file(path)
    assert [wf.id for wf in loaded] == ["first", "second"]


def test_load_guide_workflows():
    catalog = WorkflowCatalog()
    loaded = catalog.load_directory(GUIDE_WORKFLOWS)
    assert {wf.id for wf in loaded} == {"transfer_funds", "monthly_summary", "transaction_export"}


def test_load_directory_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        WorkflowCatalog().load_directory(tmp_path / "nope")
