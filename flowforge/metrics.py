"""Process-lifetime execution metrics."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict


class MetricsSnapshot(BaseModel):
    """Point-in-time copy of the collector's counters."""

    model_config = ConfigDict(frozen=True)

    executions_started: int = 0
    executions_completed: int = 0
    executions_failed: int = 0
    rollbacks_executed: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    average_execution_time: float = 0.0
    execution_time_stddev: float = 0.0

    @property
    def cache_hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0


class MetricsCollector:
    """Aggregates counts and timings across executions.

    Execution times are folded in with Welford's online algorithm so the
    mean and variance never need the full sample history.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.executions_started = 0
        self.executions_completed = 0
        self.executions_failed = 0
        self.rollbacks_executed = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self._samples = 0
        self._mean = 0.0
        self._m2 = 0.0

    def record_start(self) -> None:
        self.executions_started += 1

    def record_finish(self, execution_time: float, success: bool) -> None:
        if success:
            self.executions_completed += 1
        else:
            self.executions_failed += 1
        self._samples += 1
        delta = execution_time - self._mean
        self._mean += delta / self._samples
        self._m2 += delta * (execution_time - self._mean)

    def record_rollback(self) -> None:
        self.rollbacks_executed += 1

    def record_cache(self, hit: bool) -> None:
        if hit:
            self.cache_hits += 1
        else:
            self.cache_misses += 1

    @property
    def average_execution_time(self) -> float:
        return self._mean

    def snapshot(self) -> MetricsSnapshot:
        variance = self._m2 / (self._samples - 1) if self._samples > 1 else 0.0
        return MetricsSnapshot(
            executions_started=self.executions_started,
            executions_completed=self.executions_completed,
            executions_failed=self.executions_failed,
            rollbacks_executed=self.rollbacks_executed,
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
            average_execution_time=self._mean,
            execution_time_stddev=math.sqrt(variance),
        )
