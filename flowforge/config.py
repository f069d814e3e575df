from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_HISTORY_TTL_SECONDS,
    DEFAULT_MAX_EXECUTION_TIME_MS,
    DEFAULT_MAX_PARALLEL_OPERATIONS,
    DEFAULT_MAX_TOTAL_COST,
    DEFAULT_MIN_RELIABILITY,
    DP_MAX_STEPS,
    GENETIC_GENERATIONS,
    GENETIC_MUTATION_RATE,
    GENETIC_POPULATION_SIZE,
)
from .utils.retry import RetryPolicy


class EngineConfig(BaseModel):
    """Execution engine settings."""

    max_parallel_operations: int = DEFAULT_MAX_PARALLEL_OPERATIONS
    history_ttl_seconds: float = DEFAULT_HISTORY_TTL_SECONDS
    history_limit: int = DEFAULT_HISTORY_LIMIT
    abandon_after_seconds: Optional[float] = None
    retry: RetryPolicy = RetryPolicy()


class ConstraintsConfig(BaseModel):
    """Default optimizer constraints."""

    max_parallel_operations: int = DEFAULT_MAX_PARALLEL_OPERATIONS
    max_execution_time: float = DEFAULT_MAX_EXECUTION_TIME_MS
    max_total_cost: float = DEFAULT_MAX_TOTAL_COST
    min_reliability: float = DEFAULT_MIN_RELIABILITY


class OptimizerConfig(BaseModel):
    """Optimizer tuning knobs."""

    constraints: ConstraintsConfig = ConstraintsConfig()
    dp_max_steps: int = DP_MAX_STEPS
    population_size: int = GENETIC_POPULATION_SIZE
    generations: int = GENETIC_GENERATIONS
    mutation_rate: float = GENETIC_MUTATION_RATE
    seed: Optional[int] = None


class FlowforgeConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    optimizer: OptimizerConfig = OptimizerConfig()
    workflows_path: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> FlowforgeConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWFORGE_CONFIG env
            variable or 'flowforge.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWFORGE_CONFIG", "flowforge.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowforgeConfig(**data)
    else:
        config = FlowforgeConfig()

    env_workflows = os.getenv("FLOWFORGE_WORKFLOWS_PATH")
    if env_workflows:
        config.workflows_path = env_workflows
    env_level = os.getenv("FLOWFORGE_LOG_LEVEL")
    if env_level:
        config.log_level = env_level.upper()
    return config
