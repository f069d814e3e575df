"""Core data contracts for flowforge workflows."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class StepType(str, Enum):
    """Closed set of step capabilities understood by the engine."""

    AUTHENTICATION = "authentication"
    SINGLE_CALL = "single_call"
    PARALLEL_CALL_GROUP = "parallel_call_group"
    USER_INPUT = "user_input"
    VALIDATION = "validation"
    COMPUTATION = "computation"
    CONDITIONAL = "conditional"
    REPORT_GENERATION = "report_generation"
    CONFIRMATION = "confirmation"
    FINALIZATION = "finalization"
    DATA_PROCESSING = "data_processing"
    DELIVERY = "delivery"


class CacheOptions(BaseModel):
    """How a cacheable step's result is keyed and stored."""

    model_config = ConfigDict(frozen=True)

    ttl: int = Field(default=300, description="Time to live in seconds")
    key_pattern: Optional[str] = Field(
        default=None, description="Pattern with {field} placeholders"
    )
    key_fields: List[str] = Field(
        default_factory=list, description="Context keys that take part in the key"
    )
    classification: Optional[str] = None


class StepEstimate(BaseModel):
    """Planning estimate for a single step."""

    model_config = ConfigDict(frozen=True)

    time_ms: float = 1000.0
    cost: float = 2.0
    reliability: float = 0.8


class StepSpec(BaseModel):
    """Defines one step in a workflow."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: StepType
    name: Optional[str] = None
    operation: Optional[str] = None
    parameters: List[str] = Field(default_factory=list)
    defaults: Dict[str, Any] = Field(default_factory=dict)
    source: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    cacheable: bool = False
    cache: Optional[CacheOptions] = None
    rollbackable: bool = False
    dependencies: List[str] = Field(default_factory=list)
    estimate: Optional[StepEstimate] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


class ErrorHandlingPolicy(BaseModel):
    """Per-workflow policy for step failures."""

    model_config = ConfigDict(frozen=True)

    retry_on: List[str] = Field(default_factory=list)
    prompt_on: List[str] = Field(default_factory=list)

    def should_retry(self, step_id: str) -> bool:
        return step_id in self.retry_on

    def should_prompt(self, step_id: str) -> bool:
        return step_id in self.prompt_on


class WorkflowDefinition(BaseModel):
    """Immutable description of a workflow graph.

    Dependency edges are taken from each step's ``dependencies`` list.
    Structural validation (cycles, dangling edges) happens when the
    definition is registered with a :class:`~flowforge.catalog.WorkflowCatalog`.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    steps: List[StepSpec] = Field(default_factory=list)
    error_handling: ErrorHandlingPolicy = Field(default_factory=ErrorHandlingPolicy)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    @property
    def dependencies(self) -> Dict[str, List[str]]:
        """Map of step id to the ids it depends on."""
        return {step.id: list(step.dependencies) for step in self.steps}

    def get_step(self, step_id: str) -> Optional[StepSpec]:
        return next((s for s in self.steps if s.id == step_id), None)


class WorkflowSummary(BaseModel):
    """Lightweight listing entry for a registered workflow."""

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    step_count: int
    step_types: List[StepType] = Field(default_factory=list)
    rollbackable_steps: int = 0
    cacheable_steps: int = 0

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> "WorkflowSummary":
        seen: List[StepType] = []
        for step in definition.steps:
            if step.type not in seen:
                seen.append(step.type)
        return cls(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            step_count=len(definition.steps),
            step_types=seen,
            rollbackable_steps=sum(1 for s in definition.steps if s.rollbackable),
            cacheable_steps=sum(1 for s in definition.steps if s.cacheable),
        )


class StepResult(BaseModel):
    """Outcome of a single step handler invocation."""

    success: bool = True
    result: Any = None
    context_updates: Dict[str, Any] = Field(default_factory=dict)
    rollback_data: Optional[Dict[str, Any]] = None
    terminate: bool = False
    requires_user_input: bool = False
    prompt: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    from_cache: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RollbackEntry(BaseModel):
    """Compensation record pushed after a rollbackable step completes."""

    step_id: str
    step_type: StepType
    rollback_data: Dict[str, Any] = Field(default_factory=dict)


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_INPUT = "awaiting_input"


class ExecutionState(BaseModel):
    """Mutable state of one workflow execution.

    An instance is owned by exactly one execution and never shared.
    """

    execution_id: str = Field(default_factory=lambda: f"exec_{uuid.uuid4().hex}")
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    current_step_index: int = 0
    context: Dict[str, Any] = Field(default_factory=dict)
    step_results: Dict[str, StepResult] = Field(default_factory=dict)
    completed_steps: List[str] = Field(default_factory=list)
    rollback_stack: List[RollbackEntry] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    failed_step: Optional[str] = None

    def is_completed(self, step_id: str) -> bool:
        return step_id in self.completed_steps

    def missing_dependencies(self, step: StepSpec) -> List[str]:
        """Return dependencies of ``step`` that have not completed yet."""
        return [dep for dep in step.dependencies if dep not in self.completed_steps]

    def mark_complete(self, step: StepSpec, result: StepResult) -> None:
        """Record a successful step and push its compensation if any."""
        self.step_results[step.id] = result
        self.completed_steps.append(step.id)
        if result.context_updates:
            self.context.update(result.context_updates)
        if step.rollbackable:
            self.rollback_stack.append(
                RollbackEntry(
                    step_id=step.id,
                    step_type=step.type,
                    rollback_data=result.rollback_data or {},
                )
            )

    def pop_rollback(self) -> Optional[RollbackEntry]:
        """Pop the most recently pushed compensation entry."""
        return self.rollback_stack.pop() if self.rollback_stack else None

    def finish(self, status: ExecutionStatus, error: Optional[str] = None) -> None:
        self.status = status
        self.error = error
        self.finished_at = datetime.now(timezone.utc)


class ExecutionResult(BaseModel):
    """What callers get back from ``execute_workflow``."""

    success: bool
    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    result: Any = None
    execution_time: float = Field(default=0.0, description="Milliseconds")
    steps_completed: int = 0
    completed_steps: List[str] = Field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    retry_requested: bool = False
    requires_user_input: bool = False
    prompt: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
