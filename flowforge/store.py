"""Arena of execution states owned by one engine instance."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from .constants import DEFAULT_HISTORY_LIMIT, DEFAULT_HISTORY_TTL_SECONDS
from .contracts import ExecutionState, ExecutionStatus

logger = logging.getLogger(__name__)


class ExecutionStore:
    """Keeps running executions and a bounded, expiring history.

    Lifecycle: :meth:`start` on insert, :meth:`finish` moves the state to
    history, :meth:`sweep` drops expired history and abandoned executions.
    """

    def __init__(
        self,
        history_ttl: float = DEFAULT_HISTORY_TTL_SECONDS,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        abandon_after: Optional[float] = None,
    ) -> None:
        self._history_ttl = history_ttl
        self._history_limit = history_limit
        # None keeps running executions until they finish
        self._abandon_after = abandon_after
        self._active: Dict[str, Tuple[ExecutionState, float]] = {}
        self._history: "OrderedDict[str, Tuple[ExecutionState, float]]" = OrderedDict()

    def start(self, state: ExecutionState) -> None:
        if state.execution_id in self._active or state.execution_id in self._history:
            raise ValueError(f"Execution {state.execution_id} already registered")
        self._active[state.execution_id] = (state, time.monotonic())

    def finish(
        self, execution_id: str, state: Optional[ExecutionState] = None
    ) -> Optional[ExecutionState]:
        """Move an execution to history.

        A run that was swept as abandoned but later completes is still
        recorded when its ``state`` is passed in.
        """
        entry = self._active.pop(execution_id, None)
        if entry is None:
            if state is None:
                return None
            logger.warning(f"Execution {execution_id} finished after being swept as abandoned")
        else:
            state = entry[0]
        self._history[execution_id] = (state, time.monotonic())
        while len(self._history) > self._history_limit:
            self._history.popitem(last=False)
        return state

    def get(self, execution_id: str) -> Optional[ExecutionState]:
        entry = self._active.get(execution_id) or self._history.get(execution_id)
        return entry[0] if entry else None

    def is_active(self, execution_id: str) -> bool:
        return execution_id in self._active

    def active(self) -> List[ExecutionState]:
        return [state for state, _ in self._active.values()]

    def history(self) -> List[ExecutionState]:
        return [state for state, _ in self._history.values()]

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def history_count(self) -> int:
        return len(self._history)

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop expired history and executions running past ``abandon_after``.

        Returns:
            Number of entries removed.
        """
        now = time.monotonic() if now is None else now
        removed = 0
        for execution_id, (_, finished) in list(self._history.items()):
            if now - finished >= self._history_ttl:
                del self._history[execution_id]
                removed += 1
        if self._abandon_after is None:
            return removed
        for execution_id, (state, started) in list(self._active.items()):
            if now - started >= self._abandon_after:
                logger.warning(
                    f"Dropping abandoned execution {execution_id} "
                    f"of workflow {state.workflow_id}"
                )
                state.finish(ExecutionStatus.FAILED, error="abandoned")
                del self._active[execution_id]
                removed += 1
        return removed
