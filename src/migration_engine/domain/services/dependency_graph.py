"""Topological ordering of tables by foreign-key references.

Kahn's algorithm with a name-ordered ready set, so the output is
deterministic for a given graph. When nodes remain after the ready set runs
dry, they sit on or behind a cycle; Tarjan's algorithm then separates the
actual cycle members (strongly connected components with more than one
node) from nodes that merely depend on a cycle.
"""

from __future__ import annotations

import heapq
from typing import Iterable, Mapping

from migration_engine.domain.exceptions import CyclicDependencyError


def topological_order(
    nodes: Iterable[str],
    dependencies: Mapping[str, Iterable[str]],
    *,
    strict: bool = True,
) -> list[str]:
    """Order ``nodes`` so that every node comes after the nodes it depends on.

    Dependencies on nodes outside ``nodes`` and self-dependencies are
    ignored.

    Args:
        nodes: Node names to order.
        dependencies: node -> names of the nodes it depends on.
        strict: Raise on a cycle. When False, a cycle is broken by emitting
            the alphabetically first node that lies on it.

    Returns:
        Node names, dependencies first, ties broken by name.

    Raises:
        CyclicDependencyError: If ``strict`` and the graph has a cycle;
            names every node on a cycle.
    """
    node_set = set(nodes)
    edges: dict[str, set[str]] = {
        node: {d for d in dependencies.get(node, ()) if d in node_set and d != node}
        for node in node_set
    }
    dependents: dict[str, set[str]] = {node: set() for node in node_set}
    for node, deps in edges.items():
        for dep in deps:
            dependents[dep].add(node)

    remaining = {node: len(deps) for node, deps in edges.items()}
    ready = [node for node, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while len(order) < len(node_set):
        if not ready:
            stuck = {node for node, count in remaining.items() if count > 0}
            if strict:
                raise CyclicDependencyError(cycle_members(stuck, edges))
            breaker = min(cycle_members(stuck, edges) or stuck)
            remaining[breaker] = 0
            heapq.heappush(ready, breaker)

        node = heapq.heappop(ready)
        if node in order:
            continue
        order.append(node)
        remaining[node] = -1
        for dependent in dependents[node]:
            if remaining[dependent] > 0:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, dependent)

    return order


def cycle_members(nodes: set[str], edges: Mapping[str, set[str]]) -> list[str]:
    """Return every node of ``nodes`` that lies on a cycle."""
    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    members: list[str] = []
    counter = 0

    def visit(node: str) -> None:
        nonlocal counter
        index_of[node] = lowlink[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)

        for dep in sorted(edges.get(node, ())):
            if dep not in nodes:
                continue
            if dep not in index_of:
                visit(dep)
                lowlink[node] = min(lowlink[node], lowlink[dep])
            elif dep in on_stack:
                lowlink[node] = min(lowlink[node], index_of[dep])

        if lowlink[node] == index_of[node]:
            component = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == node:
                    break
            if len(component) > 1:
                members.extend(component)

    for node in sorted(nodes):
        if node not in index_of:
            visit(node)

    return sorted(members)
