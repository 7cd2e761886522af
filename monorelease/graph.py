"""Dependency graph utilities.

The workspace is stored as an arena: package names sorted once and addressed
by index, edges kept as index lists in both directions. Cycle detection and
the orderings below all walk those lists with explicit stacks and queues,
so arbitrarily deep workspaces never hit the recursion limit.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Mapping

from .errors import CyclicDependencyError
from .models import Workspace

# DFS colours
_UNVISITED, _ON_STACK, _DONE = 0, 1, 2


class DependencyGraph:
    """Directed graph of internal dependencies (edge A → B: A depends on B).

    Attributes:
        names: Package names, sorted; a node's index is its position here.
    """

    def __init__(self, deps: Mapping[str, Iterable[str]]) -> None:
        """Build from a mapping of package name → names it depends on.

        Dependencies that are not keys of ``deps`` are ignored (they are
        outside the set being ordered).
        """
        self.names: list[str] = sorted(deps)
        self._index = {name: i for i, name in enumerate(self.names)}
        self._out: list[list[int]] = [[] for _ in self.names]
        self._in: list[list[int]] = [[] for _ in self.names]
        for name, targets in deps.items():
            src = self._index[name]
            for target in sorted(set(targets)):
                dst = self._index.get(target)
                if dst is None or dst in self._out[src]:
                    continue
                self._out[src].append(dst)
                self._in[dst].append(src)

    @classmethod
    def build(cls, workspace: Workspace) -> DependencyGraph:
        """Build the graph for a workspace and reject cycles.

        Raises:
            CyclicDependencyError: If internal dependencies form a cycle.
        """
        graph = cls({name: pkg.deps for name, pkg in workspace.packages.items()})
        graph.check_acyclic()
        return graph

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __len__(self) -> int:
        return len(self.names)

    def edges(self) -> list[tuple[str, str]]:
        """All (dependent, dependency) pairs, sorted."""
        return [
            (self.names[src], self.names[dst])
            for src in range(len(self.names))
            for dst in sorted(self._out[src])
        ]

    def dependencies(self, name: str) -> list[str]:
        """Direct dependencies of ``name``, sorted."""
        return sorted(self.names[i] for i in self._out[self._index[name]])

    def dependents(self, name: str) -> list[str]:
        """Packages that depend directly on ``name``, sorted."""
        return sorted(self.names[i] for i in self._in[self._index[name]])

    def transitive_dependencies(self, name: str) -> set[str]:
        return self._reach(self._index[name], self._out)

    def transitive_dependents(self, name: str) -> set[str]:
        return self._reach(self._index[name], self._in)

    def _reach(self, start: int, adjacency: list[list[int]]) -> set[str]:
        seen: set[int] = set()
        stack = list(adjacency[start])
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(adjacency[node])
        return {self.names[i] for i in seen}

    def find_cycle(self) -> list[str] | None:
        """Return one dependency cycle, or None if the graph is acyclic.

        Iterative depth-first search. Each stack frame is (node, position in
        its edge list); a node is marked on-stack while it is being expanded,
        and meeting an on-stack node again closes a cycle.

        Returns:
            Names along the cycle with the first repeated at the end,
            e.g. ``["a", "b", "a"]``.
        """
        colour = [_UNVISITED] * len(self.names)
        for root in range(len(self.names)):
            if colour[root] != _UNVISITED:
                continue
            path: list[int] = [root]
            stack: list[tuple[int, int]] = [(root, 0)]
            colour[root] = _ON_STACK
            while stack:
                node, pos = stack[-1]
                if pos < len(self._out[node]):
                    stack[-1] = (node, pos + 1)
                    nxt = self._out[node][pos]
                    if colour[nxt] == _ON_STACK:
                        cycle = path[path.index(nxt) :] + [nxt]
                        return [self.names[i] for i in cycle]
                    if colour[nxt] == _UNVISITED:
                        colour[nxt] = _ON_STACK
                        path.append(nxt)
                        stack.append((nxt, 0))
                else:
                    colour[node] = _DONE
                    path.pop()
                    stack.pop()
        return None

    def check_acyclic(self) -> None:
        """Raise CyclicDependencyError naming the first cycle found."""
        cycle = self.find_cycle()
        if cycle is not None:
            raise CyclicDependencyError(cycle)

    def topo_order(self) -> list[str]:
        """Topologically sort packages, dependencies first.

        Uses Kahn's algorithm with a heap so that among packages whose
        dependencies are all satisfied, the alphabetically first comes first.

        Raises:
            CyclicDependencyError: If a dependency cycle is detected.

        Example:
            If A depends on B, and B depends on C: topo_order() → [C, B, A]
        """
        in_degree = [len(out) for out in self._out]
        heap = [self.names[i] for i, d in enumerate(in_degree) if d == 0]
        heapq.heapify(heap)
        order: list[str] = []

        while heap:
            name = heapq.heappop(heap)
            order.append(name)
            for dependent in self._in[self._index[name]]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, self.names[dependent])

        if len(order) != len(self.names):
            self.check_acyclic()
        return order

    def waves(self) -> list[list[str]]:
        """Split packages into layers that can be processed in parallel.

        Repeatedly removes every package whose dependencies have all been
        removed already. Wave 0 holds the packages without internal
        dependencies; for every edge A → B, B's wave comes before A's.

        Raises:
            CyclicDependencyError: If a dependency cycle is detected.
        """
        in_degree = [len(out) for out in self._out]
        current = [i for i, d in enumerate(in_degree) if d == 0]
        waves: list[list[str]] = []
        placed = 0

        while current:
            waves.append(sorted(self.names[i] for i in current))
            placed += len(current)
            following: list[int] = []
            for node in current:
                for dependent in self._in[node]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        following.append(dependent)
            current = following

        if placed != len(self.names):
            self.check_acyclic()
        return waves

