"""
Service dependency graph utilities (pure).

The graph maps each service to the services it depends on. Startup
order is a topological order of that graph (dependencies first).
No I/O.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from tmdeploy.core.errors import DependencyCycleError, MissingConfigurationError


def unknown_dependencies(graph: Mapping[str, Iterable[str]]) -> list[tuple[str, str]]:
    """Edges that point at a service not present in *graph*."""
    missing: list[tuple[str, str]] = []
    for service, deps in graph.items():
        for dep in deps:
            if dep not in graph:
                missing.append((service, dep))
    return missing


def topological_order(graph: Mapping[str, Iterable[str]]) -> list[str]:
    """Order services so that every dependency comes before its dependents.

    Kahn's algorithm. Ties are broken alphabetically so the order is
    stable across runs.

    Raises:
        MissingConfigurationError: If a service depends on an unknown one.
        DependencyCycleError: If the edges contain a cycle; the error
            lists every service that is part of, or blocked by, the cycle.
    """
    deps_of = {service: sorted(set(deps)) for service, deps in graph.items()}

    missing = unknown_dependencies(deps_of)
    if missing:
        service, dep = missing[0]
        raise MissingConfigurationError(
            f"{service}.depends_on",
            f"Service '{service}' depends on unknown service '{dep}'",
        )

    in_degree: dict[str, int] = {s: len(deps) for s, deps in deps_of.items()}
    # dep → services that wait for it
    dependents: dict[str, list[str]] = {s: [] for s in deps_of}
    for service, deps in deps_of.items():
        for dep in deps:
            dependents[dep].append(service)

    ready = sorted(s for s, deg in in_degree.items() if deg == 0)
    order: list[str] = []

    while ready:
        node = ready.pop(0)
        order.append(node)
        for successor in dependents[node]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                ready.append(successor)
        ready.sort()

    if len(order) < len(deps_of):
        raise DependencyCycleError(sorted(s for s, deg in in_degree.items() if deg > 0))

    return order
