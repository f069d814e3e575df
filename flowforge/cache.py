"""Cache port used to memoize step results."""

from __future__ import annotations

import json
import logging
import string
import time
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from .contracts import StepSpec

logger = logging.getLogger(__name__)

_MISSING = "default"


class CachePort(Protocol):
    """Protocol for step result caches."""

    async def get(self, key: str, ctx: Optional[Mapping[str, Any]] = None) -> Any:
        """Return the cached value or ``None``."""

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        classification: Optional[str] = None,
    ) -> None:
        """Store ``value`` under ``key``."""


class InMemoryCache:
    """Store cached step results in local memory.

    Entries expire lazily on read. Useful for tests or single-process
    deployments; nothing survives a restart.
    """

    def __init__(self, default_ttl: float = 300.0) -> None:
        self._default_ttl = default_ttl
        self._entries: Dict[str, Tuple[Any, float, Optional[str]]] = {}

    async def get(self, key: str, ctx: Optional[Mapping[str, Any]] = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at, _ = entry
        if expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        classification: Optional[str] = None,
    ) -> None:
        lifetime = self._default_ttl if ttl is None else ttl
        self._entries[key] = (value, time.monotonic() + lifetime, classification)

    def classification_of(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        return entry[2] if entry else None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _render(value: Any) -> str:
    if value is None:
        return _MISSING
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)


def build_cache_key(
    workflow_id: str,
    step: StepSpec,
    context: Mapping[str, Any],
    suffix: Optional[str] = None,
) -> str:
    """Build a deterministic cache key for ``step``.

    Only context keys the step declares take part in the key: the
    placeholders of ``cache.key_pattern`` when a pattern is set, otherwise
    ``cache.key_fields`` or, failing that, the step's ``parameters``.
    """
    options = step.cache
    if options is not None and options.key_pattern:
        fields = {
            name
            for _, name, _, _ in string.Formatter().parse(options.key_pattern)
            if name
        }
        values = {name: _render(context.get(name)) for name in fields}
        values.update({"workflow_id": workflow_id, "step_id": step.id})
        key = options.key_pattern.format(**values)
    else:
        declared = (options.key_fields if options and options.key_fields else None) or (
            step.parameters
        )
        parts = [f"workflow:{workflow_id}:{step.id}"]
        parts.extend(f"{name}={_render(context.get(name))}" for name in sorted(declared))
        key = ":".join(parts)
    return f"{key}:{suffix}" if suffix else key
