"""Build graph structures from the task registry."""

from __future__ import annotations

from collections import defaultdict

from taskpipe.config.registry import TaskRegistry
from taskpipe.util.errors import UnknownDependencyError, UnknownTaskError


def build_graph(registry: TaskRegistry, requested: str) -> dict[str, set[str]]:
    """Collect direct dependencies of every task reachable from ``requested``."""
    if requested not in registry:
        raise UnknownTaskError(requested)
    graph: dict[str, set[str]] = {}
    pending = [requested]
    while pending:
        name = pending.pop()
        if name in graph:
            continue
        deps = set(registry.get(name).dependencies)
        graph[name] = deps
        for dep in sorted(deps, reverse=True):
            if dep not in registry:
                raise UnknownDependencyError(dep, name)
            if dep not in graph:
                pending.append(dep)
    return graph


def build_adjacency(graph: dict[str, set[str]]) -> tuple[dict[str, list[str]], dict[str, int]]:
    """Return dependents adjacency and in-degree by task name."""
    dependents: dict[str, list[str]] = defaultdict(list)
    in_degree: dict[str, int] = {}

    for name in sorted(graph):
        deps = graph[name]
        in_degree[name] = len(deps)
        dependents.setdefault(name, [])
        for dep in sorted(deps):
            dependents[dep].append(name)

    return dict(dependents), in_degree
