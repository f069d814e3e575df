"""Flowforge: dependency-aware workflow execution and plan optimization."""

from .cache import CachePort, InMemoryCache, build_cache_key
from .catalog import WorkflowCatalog
from .compensation import CompensationRegistry, RollbackReport
from .concurrency import CancellationToken
from .config import FlowforgeConfig, load_config
from .contracts import (
    ErrorHandlingPolicy,
    ExecutionResult,
    ExecutionState,
    ExecutionStatus,
    StepResult,
    StepSpec,
    StepType,
    WorkflowDefinition,
)
from .engine import EngineStats, ExecutionOptions, WorkflowEngine
from .errors import (
    DependencyUnmetError,
    ExecutionCancelledError,
    ExecutionFailure,
    FlowforgeError,
    InvalidWorkflowError,
    StepExecutionError,
    UnknownStepTypeError,
    WorkflowNotFoundError,
)
from .handlers import StepContext, StepHandlerRegistry
from .optimizer import Constraints, OptimizationPlan, OptimizationTarget, Strategy, WorkflowOptimizer

__version__ = "0.1.0"
__all__ = [
    "CachePort",
    "CancellationToken",
    "CompensationRegistry",
    "Constraints",
    "DependencyUnmetError",
    "EngineStats",
    "ErrorHandlingPolicy",
    "ExecutionCancelledError",
    "ExecutionFailure",
    "ExecutionOptions",
    "ExecutionResult",
    "ExecutionState",
    "ExecutionStatus",
    "FlowforgeConfig",
    "FlowforgeError",
    "InMemoryCache",
    "InvalidWorkflowError",
    "OptimizationPlan",
    "OptimizationTarget",
    "RollbackReport",
    "StepContext",
    "StepExecutionError",
    "StepHandlerRegistry",
    "StepResult",
    "StepSpec",
    "StepType",
    "Strategy",
    "UnknownStepTypeError",
    "WorkflowCatalog",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowNotFoundError",
    "WorkflowOptimizer",
    "build_cache_key",
    "load_config",
]
