"""Registry of validated workflow definitions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

import yaml
from pydantic import ValidationError

from .contracts import WorkflowDefinition, WorkflowSummary
from .errors import InvalidWorkflowError, WorkflowNotFoundError
from .graph import validate_workflow

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = (".yaml", ".yml")


class WorkflowCatalog:
    """Holds workflow definitions keyed by id.

    Every definition is validated on the way in, so nothing cyclic or
    dangling can be fetched back out.
    """

    def __init__(self, definitions: Iterable[Union[WorkflowDefinition, dict]] = ()) -> None:
        self._workflows: Dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: Union[WorkflowDefinition, Dict[str, Any]]) -> WorkflowDefinition:
        """Validate and store ``definition``, replacing any previous version."""
        if not isinstance(definition, WorkflowDefinition):
            workflow_id = str(definition.get("id", "<unknown>"))
            try:
                definition = WorkflowDefinition.model_validate(definition)
            except ValidationError as e:
                raise InvalidWorkflowError(workflow_id, str(e)) from e
        validate_workflow(definition)
        if definition.id in self._workflows:
            logger.info(f"Replacing workflow definition {definition.id}")
        self._workflows[definition.id] = definition
        logger.debug(f"Registered workflow {definition.id} with {len(definition.steps)} steps")
        return definition

    def get(self, workflow_id: str) -> WorkflowDefinition:
        try:
            return self._workflows[workflow_id]
        except KeyError:
            raise WorkflowNotFoundError(workflow_id) from None

    def remove(self, workflow_id: str) -> None:
        self._workflows.pop(workflow_id, None)

    def list_summaries(self) -> List[WorkflowSummary]:
        return [WorkflowSummary.from_definition(wf) for wf in self._workflows.values()]

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)

    # ------------------------------------------------------------------
    def load_file(self, path: Union[str, Path]) -> List[WorkflowDefinition]:
        """Load one YAML file holding a workflow or a ``workflows:`` list."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if isinstance(data, dict) and "workflows" in data:
            documents = data["workflows"] or []
        elif isinstance(data, list):
            documents = data
        else:
            documents = [data]

        loaded = []
        for document in documents:
            if not isinstance(document, dict):
                raise InvalidWorkflowError(str(path), "workflow document must be a mapping")
            loaded.append(self.register(document))
        logger.info(f"Loaded {len(loaded)} workflow(s) from {path}")
        return loaded

    def load_directory(self, path: Union[str, Path]) -> List[WorkflowDefinition]:
        """Load every YAML file below ``path`` in sorted order."""
        root = Path(path)
        if not root.exists():
            raise FileNotFoundError(str(root))
        loaded: List[WorkflowDefinition] = []
        for file in sorted(root.rglob("*")):
            if file.is_file() and file.suffix in _YAML_SUFFIXES:
                loaded.extend(self.load_file(file))
        return loaded
