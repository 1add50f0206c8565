"""DAG validation helpers."""

from __future__ import annotations

import heapq

from taskpipe.util.errors import CycleError


def find_cycle(names: set[str], dependents: dict[str, list[str]]) -> list[str]:
    """Return one closed path ``a -> b -> ... -> a`` where each task depends on the next.

    ``names`` are the tasks Kahn's algorithm could not order.
    """
    requires: dict[str, list[str]] = {name: [] for name in names}
    for dep, children in dependents.items():
        for child in children:
            if dep in names and child in names:
                requires[child].append(dep)
    position: dict[str, int] = {}
    path: list[str] = []
    current = min(names)
    while current not in position:
        position[current] = len(path)
        path.append(current)
        # an unordered task always has an unordered dependency
        current = min(requires[current])
    return path[position[current] :] + [current]


def assert_acyclic(
    task_ids: list[str], dependents: dict[str, list[str]], in_degree: dict[str, int]
) -> list[str]:
    """Validate graph has no cycle using Kahn's algorithm and return the order."""
    degrees = dict(in_degree)
    ready = [task_id for task_id in task_ids if degrees.get(task_id, 0) == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        current = heapq.heappop(ready)
        order.append(current)
        for nxt in dependents.get(current, []):
            degrees[nxt] = degrees[nxt] - 1
            if degrees[nxt] == 0:
                heapq.heappush(ready, nxt)

    if len(order) != len(task_ids):
        raise CycleError(find_cycle(set(task_ids) - set(order), dependents))
    return order
