"""Dependency graph helpers shared by the engine and the optimizer."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Sequence, Set, Union

from .contracts import WorkflowDefinition
from .errors import InvalidWorkflowError

DependencyMap = Mapping[str, Sequence[str]]


def validate_workflow(definition: WorkflowDefinition) -> None:
    """Reject duplicate ids, dangling edges and cycles.

    Raises:
        InvalidWorkflowError: If the definition cannot be scheduled.
    """
    seen: Set[str] = set()
    for step in definition.steps:
        if step.id in seen:
            raise InvalidWorkflowError(definition.id, f"duplicate step id '{step.id}'")
        seen.add(step.id)

    for step in definition.steps:
        for dep in step.dependencies:
            if dep == step.id:
                raise InvalidWorkflowError(
                    definition.id, f"step '{step.id}' depends on itself"
                )
            if dep not in seen:
                raise InvalidWorkflowError(
                    definition.id, f"step '{step.id}' depends on unknown step '{dep}'"
                )

    for policy_id in (
        *definition.error_handling.retry_on,
        *definition.error_handling.prompt_on,
    ):
        if policy_id not in seen:
            raise InvalidWorkflowError(
                definition.id, f"error handling references unknown step '{policy_id}'"
            )

    cycle = find_cycle(definition.step_ids, definition.dependencies)
    if cycle:
        raise InvalidWorkflowError(
            definition.id, f"dependency cycle detected: {' -> '.join(cycle)}"
        )


def find_cycle(step_ids: Sequence[str], deps: DependencyMap) -> List[str]:
    """Return one cycle as a list of ids (first id repeated at the end), or []."""
    white, grey, black = 0, 1, 2
    color: Dict[str, int] = {step_id: white for step_id in step_ids}
    parent: Dict[str, str] = {}

    for root in step_ids:
        if color[root] != white:
            continue
        stack = [(root, iter(deps.get(root, ())))]
        color[root] = grey
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                if child not in color:
                    continue
                if color[child] == grey:
                    cycle = [child]
                    cursor = node
                    while cursor != child:
                        cycle.append(cursor)
                        cursor = parent[cursor]
                    cycle.append(child)
                    cycle.reverse()
                    return cycle
                if color[child] == white:
                    parent[child] = node
                    color[child] = grey
                    stack.append((child, iter(deps.get(child, ()))))
                    advanced = True
                    break
            if not advanced:
                color[node] = black
                stack.pop()
    return []


def topological_order(step_ids: Sequence[str], deps: DependencyMap) -> List[str]:
    """Kahn's algorithm, breaking ties by declaration order."""
    position = {step_id: idx for idx, step_id in enumerate(step_ids)}
    remaining: Dict[str, Set[str]] = {
        step_id: {d for d in deps.get(step_id, ()) if d in position}
        for step_id in step_ids
    }
    order: List[str] = []
    while remaining:
        ready = sorted(
            (s for s, pending in remaining.items() if not pending),
            key=position.__getitem__,
        )
        if not ready:
            raise ValueError(f"dependency cycle among {sorted(remaining)}")
        chosen = ready[0]
        order.append(chosen)
        del remaining[chosen]
        for pending in remaining.values():
            pending.discard(chosen)
    return order


def ancestors(step_id: str, deps: DependencyMap) -> Set[str]:
    """All direct and transitive prerequisites of ``step_id``."""
    found: Set[str] = set()
    stack = list(deps.get(step_id, ()))
    while stack:
        current = stack.pop()
        if current in found:
            continue
        found.add(current)
        stack.extend(deps.get(current, ()))
    return found


def transitive_closure(deps: DependencyMap) -> Dict[str, Set[str]]:
    """Map every step to its full ancestor set."""
    return {step_id: ancestors(step_id, deps) for step_id in deps}


def has_path(source: str, target: str, deps: DependencyMap) -> bool:
    """True if ``source`` depends on ``target`` directly or transitively."""
    return target in ancestors(source, deps)


def can_run_in_parallel(
    step_id: str, group: Union[str, Iterable[str]], deps: DependencyMap
) -> bool:
    """True when no dependency path joins ``step_id`` and any member of ``group``.

    Both directions of the transitive closure are checked, so the relation is
    symmetric.
    """
    members = [group] if isinstance(group, str) else list(group)
    own = ancestors(step_id, deps)
    for member in members:
        if member == step_id:
            return False
        if member in own or step_id in ancestors(member, deps):
            return False
    return True


def is_valid_order(order: Sequence[str], deps: DependencyMap) -> bool:
    """True if every step appears after all of its dependencies."""
    placed: Set[str] = set()
    for step_id in order:
        if any(dep not in placed for dep in deps.get(step_id, ()) if dep in deps):
            return False
        placed.add(step_id)
    return True
