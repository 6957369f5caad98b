"""Rule dependency DAG built from ``depends_on`` edges.

The graph yields a deterministic linear order (ties broken by declaration
order) and rejects cycles with a ``CyclicDependencyError`` that names every
rule on the detected cycle.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from typing import Protocol

from ontoforge.core.errors import CyclicDependencyError, UnknownDependencyError


class DependencyNode(Protocol):
    """Anything with a ``name`` and a ``depends_on`` list (generation or inference rule)."""

    name: str
    depends_on: list[str]


class RuleDependencyGraph:
    """Directed acyclic graph of rule dependencies.

    An edge ``a -> b`` means rule ``a`` depends on rule ``b``; ``b`` sorts
    first.

    Parameters
    ----------
    rules:
        Rules in declaration order.
    """

    def __init__(self, rules: Iterable[DependencyNode]) -> None:
        rules = list(rules)
        self._ordinal: dict[str, int] = {r.name: i for i, r in enumerate(rules)}
        # Forward edges: rule -> rules it depends on
        self._prerequisites: dict[str, list[str]] = {
            r.name: list(dict.fromkeys(r.depends_on)) for r in rules
        }
        # Reverse edges: rule -> rules that depend on it
        self._dependents: dict[str, list[str]] = {r.name: [] for r in rules}
        for r in rules:
            for dep in self._prerequisites[r.name]:
                if dep not in self._dependents:
                    raise UnknownDependencyError(
                        f"Rule '{r.name}' depends on unknown rule '{dep}'",
                        rule=r.name,
                    )
                self._dependents[dep].append(r.name)

        self._order = self._topological_sort()

    # ------------------------------------------------------------------
    # Sorting
    # ------------------------------------------------------------------

    def _topological_sort(self) -> list[str]:
        """Kahn's algorithm; raises CyclicDependencyError if nodes remain."""
        in_degree = {name: len(deps) for name, deps in self._prerequisites.items()}
        queue = deque(
            sorted(
                (name for name, deg in in_degree.items() if deg == 0),
                key=self._ordinal.__getitem__,
            )
        )
        order: list[str] = []
        while queue:
            node = queue.popleft()
            order.append(node)
            for dependent in sorted(self._dependents[node], key=self._ordinal.__getitem__):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(order) != len(self._prerequisites):
            remaining = {name for name, deg in in_degree.items() if deg > 0}
            raise CyclicDependencyError(self._find_cycle(remaining))
        return order

    def _find_cycle(self, remaining: set[str]) -> list[str]:
        """Walk prerequisite edges inside the unsorted residue until a node repeats.

        Every residual node has at least one residual prerequisite, so the
        walk always closes a cycle.
        """
        start = min(remaining, key=self._ordinal.__getitem__)
        path: list[str] = []
        position: dict[str, int] = {}
        node = start
        while node not in position:
            position[node] = len(path)
            path.append(node)
            node = next(
                dep
                for dep in sorted(self._prerequisites[node], key=self._ordinal.__getitem__)
                if dep in remaining
            )
        cycle = path[position[node]:]
        # Rotate so the earliest-declared member leads
        first = min(range(len(cycle)), key=lambda i: self._ordinal[cycle[i]])
        return cycle[first:] + cycle[:first]

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    @property
    def order(self) -> list[str]:
        """All rule names in dependency order (dependencies first)."""
        return list(self._order)
