"""Exception taxonomy for flowforge workflows."""

from __future__ import annotations

from typing import Any, List, Optional


class FlowforgeError(Exception):
    """Base class for all flowforge errors."""


class InvalidWorkflowError(FlowforgeError):
    """Workflow definition is structurally invalid (cycle, unknown dependency)."""

    def __init__(self, workflow_id: str, message: str) -> None:
        super().__init__(f"Invalid workflow '{workflow_id}': {message}")
        self.workflow_id = workflow_id


class WorkflowNotFoundError(FlowforgeError):
    """No workflow is registered under the requested id."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow '{workflow_id}' not found")
        self.workflow_id = workflow_id


class ExecutionFailure(FlowforgeError):
    """Fatal failure of a running execution.

    Carries enough context for callers to tell which step failed and how far
    the execution got before it was aborted.
    """

    def __init__(
        self,
        message: str,
        *,
        step_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        completed_steps: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.step_id = step_id
        self.execution_id = execution_id
        self.completed_steps = list(completed_steps or [])
        self.rollback: Any = None


class DependencyUnmetError(ExecutionFailure):
    """A step was scheduled before all of its dependencies completed."""

    def __init__(self, step_id: str, missing: List[str], **kwargs: Any) -> None:
        super().__init__(
            f"Step '{step_id}' dependencies not met: {', '.join(missing)}",
            step_id=step_id,
            **kwargs,
        )
        self.missing = list(missing)


class StepExecutionError(ExecutionFailure):
    """A step handler failed and the workflow policy treats it as fatal."""

    def __init__(
        self, step_id: str, reason: str, cause: Optional[BaseException] = None, **kwargs: Any
    ) -> None:
        super().__init__(f"Step '{step_id}' failed: {reason}", step_id=step_id, **kwargs)
        self.reason = reason
        self.cause = cause


class UnknownStepTypeError(ExecutionFailure):
    """Step type has no handler in the dispatch table."""

    def __init__(self, step_type: Any, step_id: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(
            f"Unknown step type: {step_type}", step_id=step_id, **kwargs
        )
        self.step_type = step_type


class ExecutionCancelledError(ExecutionFailure):
    """Execution was cancelled or ran past its deadline."""


class ConstraintViolationError(FlowforgeError):
    """An optimization plan violates one of its constraints."""

    def __init__(self, constraint: str, actual: Any, limit: Any, message: str) -> None:
        super().__init__(message)
        self.constraint = constraint
        self.actual = actual
        self.limit = limit


class RollbackError(FlowforgeError):
    """A compensation handler failed. Never aborts the remaining unwind."""

    def __init__(self, step_id: str, step_type: Any, cause: BaseException) -> None:
        super().__init__(f"Rollback of step '{step_id}' ({step_type}) failed: {cause}")
        self.step_id = step_id
        self.step_type = step_type
        self.cause = cause


__all__ = [
    "FlowforgeError",
    "InvalidWorkflowError",
    "WorkflowNotFoundError",
    "ExecutionFailure",
    "DependencyUnmetError",
    "StepExecutionError",
    "UnknownStepTypeError",
    "ExecutionCancelledError",
    "ConstraintViolationError",
    "RollbackError",
]
