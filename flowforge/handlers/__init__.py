"""Step handler registry and built-in handlers."""

from __future__ import annotations

from .builtin import BUILTIN_HANDLERS, validate_parameters
from .registry import StepContext, StepHandler, StepHandlerRegistry, coerce_result

__all__ = [
    "BUILTIN_HANDLERS",
    "StepContext",
    "StepHandler",
    "StepHandlerRegistry",
    "coerce_result",
    "validate_parameters",
]
