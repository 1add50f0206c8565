from __future__ import annotations

from taskpipe.config.registry import TaskRegistry
from taskpipe.dag.build import build_adjacency, build_graph
from taskpipe.dag.validate import assert_acyclic


def resolve(registry: TaskRegistry, requested: str) -> list[str]:
    """Return an execution order for ``requested`` and everything it needs.

    Every task follows all of its dependencies and the requested task comes
    last, since nothing in its own closure depends on it.
    """
    graph = build_graph(registry, requested)
    dependents, in_degree = build_adjacency(graph)
    return assert_acyclic(sorted(graph), dependents, in_degree)
