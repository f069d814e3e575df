"""Domain-neutral handlers for bookkeeping step types.

Steps that talk to outside systems (authentication, calls, computations,
reports, conditionals, validation rules) have no built-in handler and must
be registered by the application.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from ..contracts import StepResult, StepSpec, StepType
from .registry import StepContext, StepHandler


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def validate_parameters(step: StepSpec, values: Dict[str, Any]) -> List[str]:
    """Check collected values against ``step.options['validation']`` rules.

    Supported rule keys: ``type`` (``enum`` with ``values``, ``number`` with
    ``min``/``max``) and ``pattern`` (regular expression).
    """
    rules = step.options.get("validation") or {}
    errors: List[str] = []
    for name, rule in rules.items():
        if not isinstance(rule, dict) or name not in values:
            continue
        value = values[name]
        kind = rule.get("type")
        if kind == "enum" and value not in rule.get("values", []):
            errors.append(f"{name} must be one of: {', '.join(map(str, rule.get('values', [])))}")
        if kind == "number":
            try:
                number = float(value)
            except (TypeError, ValueError):
                errors.append(f"{name} must be a valid number")
            else:
                if rule.get("min") is not None and number < rule["min"]:
                    errors.append(f"{name} must be at least {rule['min']}")
                if rule.get("max") is not None and number > rule["max"]:
                    errors.append(f"{name} cannot exceed {rule['max']}")
        pattern = rule.get("pattern")
        if pattern and not re.fullmatch(pattern, str(value)):
            errors.append(f"{name} format is invalid")
    return errors


async def handle_user_input(step: StepSpec, ctx: StepContext) -> StepResult:
    collected = ctx.collect_parameters(step)
    for name in step.parameters:
        if name not in collected and name in step.defaults:
            collected[name] = step.defaults[name]

    missing = [name for name in step.parameters if name not in collected]
    if missing:
        rules = step.options.get("validation") or {}
        prompt = {
            "step_id": step.id,
            "step_name": step.display_name,
            "missing_parameters": missing,
            "parameters": [
                {
                    "name": name,
                    "type": (rules.get(name) or {}).get("type", "string"),
                    "required": True,
                }
                for name in missing
            ],
        }
        if ctx.interactive:
            return StepResult(success=False, requires_user_input=True, prompt=prompt)
        return StepResult(
            success=False,
            error=f"missing parameters: {', '.join(missing)}",
            prompt=prompt,
        )

    errors = validate_parameters(step, collected)
    if errors:
        return StepResult(
            success=False,
            requires_user_input=ctx.interactive,
            error="; ".join(errors),
            prompt={"step_id": step.id, "validation_errors": errors},
        )
    return StepResult(result=dict(collected), context_updates=dict(collected))


async def handle_confirmation(step: StepSpec, ctx: StepContext) -> StepResult:
    return StepResult(
        result={
            "confirmation_id": _new_id("confirm"),
            "workflow_id": ctx.workflow_id,
            "execution_id": ctx.execution_id,
            "confirmed_at": _now(),
            "details": {k: v.result for k, v in ctx.step_results.items()},
        }
    )


async def handle_finalization(step: StepSpec, ctx: StepContext) -> StepResult:
    return StepResult(
        result={
            "status": "finalized",
            "workflow_id": ctx.workflow_id,
            "execution_id": ctx.execution_id,
            "finalized_at": _now(),
            "results": {k: v.result for k, v in ctx.step_results.items()},
        }
    )


async def handle_data_processing(step: StepSpec, ctx: StepContext) -> StepResult:
    operations = list(step.options.get("operations", []))
    return StepResult(
        result={
            "processed_at": _now(),
            "operations": operations,
            "input_steps": list(ctx.step_results),
            "output": {op: {"operation": op, "processed": True} for op in operations},
        }
    )


async def handle_delivery(step: StepSpec, ctx: StepContext) -> StepResult:
    return StepResult(
        result={
            "delivery_id": _new_id("delivery"),
            "methods": list(step.options.get("methods", [])),
            "delivered_at": _now(),
            "status": "delivered",
        }
    )


BUILTIN_HANDLERS: Dict[StepType, StepHandler] = {
    StepType.USER_INPUT: handle_user_input,
    StepType.CONFIRMATION: handle_confirmation,
    StepType.FINALIZATION: handle_finalization,
    StepType.DATA_PROCESSING: handle_data_processing,
    StepType.DELIVERY: handle_delivery,
}
