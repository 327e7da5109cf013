"""Dependency graph with cycle detection and startup/shutdown ordering."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable


class CycleDetectedError(Exception):
    """Raised when an ordering is requested for a graph that contains a cycle."""

    def __init__(self, message: str = "cycle detected in graph") -> None:
        super().__init__(message)


@dataclass
class Node:
    """A node and the ids it depends on."""

    id: str
    dependencies: list[str] = field(default_factory=list)


@dataclass
class ParallelGroup:
    """Nodes that can be started (or stopped) together."""

    level: int
    nodes: list[str]


class Graph:
    """A directed graph of service ids and their dependencies.

    Edges pointing at ids that are not nodes of the graph are ignored by
    cycle detection and ordering; :meth:`validate` reports them.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, list[str]] = {}
        self._cycle_cache: bool | None = None
        self._topo_order: list[str] | None = None
        self._topo_order_rev: list[str] | None = None

    def _invalidate(self) -> None:
        self._cycle_cache = None
        self._topo_order = None
        self._topo_order_rev = None

    # ------------------------------------------------------------------ nodes

    def add_node(self, node_id: str, dependencies: Iterable[str] | None = None) -> None:
        """Add or overwrite a node with the given dependencies."""
        deps = list(dependencies or ())
        with self._lock:
            self._nodes[node_id] = Node(node_id, deps)
            self._edges[node_id] = deps
            self._invalidate()

    def remove_node(self, node_id: str) -> None:
        with self._lock:
            self._nodes.pop(node_id, None)
            self._edges.pop(node_id, None)
            self._invalidate()

    def has_node(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._nodes

    def get_node(self, node_id: str) -> Node | None:
        """Return a copy of the node, or None if it is absent."""
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return None
            return Node(node.id, list(node.dependencies))

    def get_dependencies(self, node_id: str) -> list[str]:
        with self._lock:
            return list(self._edges.get(node_id, ()))

    def get_dependents(self, node_id: str) -> list[str]:
        with self._lock:
            return [nid for nid, deps in self._edges.items() if node_id in deps]

    def nodes(self) -> list[str]:
        with self._lock:
            return list(self._nodes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def clear(self) -> None:
        with self._lock:
            self._nodes = {}
            self._edges = {}
            self._invalidate()

    def clone(self) -> Graph:
        """Return an independent copy of the graph."""
        with self._lock:
            copy = Graph()
            for node_id, node in self._nodes.items():
                deps = list(node.dependencies)
                copy._nodes[node_id] = Node(node.id, deps)
                copy._edges[node_id] = deps
            return copy

    def validate(self) -> list[str]:
        """Return dependency ids that are not nodes, in order of first mention."""
        with self._lock:
            missing: dict[str, None] = {}
            for deps in self._edges.values():
                for dep in deps:
                    if dep not in self._nodes:
                        missing.setdefault(dep, None)
            return list(missing)

    def _present_deps(self, node_id: str) -> list[str]:
        return [dep for dep in self._edges.get(node_id, ()) if dep in self._nodes]

    # ----------------------------------------------------------------- cycles

    def detect_cycles(self) -> list[list[str]]:
        """Return strongly connected components that form cycles (Tarjan)."""
        with self._lock:
            counter = 0
            stack: list[str] = []
            on_stack: set[str] = set()
            indices: dict[str, int] = {}
            lowlink: dict[str, int] = {}
            sccs: list[list[str]] = []

            def strong_connect(node_id: str) -> None:
                nonlocal counter
                indices[node_id] = lowlink[node_id] = counter
                counter += 1
                stack.append(node_id)
                on_stack.add(node_id)

                for dep in self._present_deps(node_id):
                    if dep not in indices:
                        strong_connect(dep)
                        lowlink[node_id] = min(lowlink[node_id], lowlink[dep])
                    elif dep in on_stack:
                        lowlink[node_id] = min(lowlink[node_id], indices[dep])

                if lowlink[node_id] == indices[node_id]:
                    scc: list[str] = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        scc.append(member)
                        if member == node_id:
                            break
                    sccs.append(scc)

            for node_id in self._nodes:
                if node_id not in indices:
                    strong_connect(node_id)

            cycles = []
            for scc in sccs:
                if len(scc) > 1:
                    cycles.append(scc)
                elif scc and scc[0] in self._edges.get(scc[0], ()):
                    cycles.append(scc)
            return cycles

    def has_cycle(self) -> bool:
        with self._lock:
            if self._cycle_cache is None:
                self._cycle_cache = self._compute_has_cycle()
            return self._cycle_cache

    def _compute_has_cycle(self) -> bool:
        unvisited = set(self._nodes)
        in_progress: set[str] = set()

        def dfs(node_id: str) -> bool:
            unvisited.discard(node_id)
            in_progress.add(node_id)
            for dep in self._present_deps(node_id):
                if dep in in_progress:
                    return True
                if dep in unvisited and dfs(dep):
                    return True
            in_progress.discard(node_id)
            return False

        return any(node_id in unvisited and dfs(node_id) for node_id in self._nodes)

    def find_cycle_path(self, start: str) -> list[str] | None:
        """Return a cycle reachable from ``start``, first and last id equal."""
        with self._lock:
            visited: set[str] = set()
            path: list[str] = []
            in_path: set[str] = set()

            def dfs(node_id: str) -> list[str] | None:
                if node_id in in_path:
                    return path[path.index(node_id):] + [node_id]
                if node_id in visited:
                    return None
                visited.add(node_id)
                path.append(node_id)
                in_path.add(node_id)
                for dep in self._present_deps(node_id):
                    cycle = dfs(dep)
                    if cycle is not None:
                        return cycle
                path.pop()
                in_path.discard(node_id)
                return None

            return dfs(start)

    def get_all_cycle_paths(self) -> list[list[str]]:
        with self._lock:
            paths = []
            for scc in self.detect_cycles():
                if scc:
                    path = self.find_cycle_path(scc[0])
                    if path is not None:
                        paths.append(path)
            return paths

    # --------------------------------------------------------------- ordering

    def topological_sort(self) -> list[str]:
        """Return ids with every dependency before its dependents."""
        with self._lock:
            if self._topo_order is None:
                order = self._kahn()
                self._topo_order = order
                self._topo_order_rev = order[::-1]
            return list(self._topo_order)

    def _kahn(self) -> list[str]:
        dependents: dict[str, list[str]] = {}
        in_degree = dict.fromkeys(self._nodes, 0)
        for node_id, deps in self._edges.items():
            for dep in deps:
                if dep in self._nodes:
                    dependents.setdefault(dep, []).append(node_id)
                    in_degree[node_id] += 1

        queue = deque(nid for nid, degree in in_degree.items() if degree == 0)
        ordered: list[str] = []
        while queue:
            node_id = queue.popleft()
            ordered.append(node_id)
            for dependent in dependents.get(node_id, ()):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(ordered) != len(self._nodes):
            raise CycleDetectedError()
        return ordered

    def reverse_topological_sort(self) -> list[str]:
        with self._lock:
            self.topological_sort()
            return list(self._topo_order_rev or ())

    def startup_order(self) -> list[str]:
        return self.topological_sort()

    def shutdown_order(self) -> list[str]:
        return self.reverse_topological_sort()

    def resolution_order(self, target: str) -> list[str]:
        """Return ``target`` preceded by everything it transitively needs."""
        with self._lock:
            if target not in self._nodes:
                return [target]

            visited: set[str] = set()
            visiting: set[str] = set()
            order: list[str] = []

            def visit(node_id: str) -> None:
                if node_id in visiting:
                    raise CycleDetectedError()
                if node_id in visited:
                    return
                visiting.add(node_id)
                for dep in self._present_deps(node_id):
                    visit(dep)
                visiting.discard(node_id)
                visited.add(node_id)
                order.append(node_id)

            visit(target)
            return order

    def parallel_startup_groups(self) -> list[ParallelGroup]:
        """Group nodes by depth; every group depends only on earlier groups."""
        with self._lock:
            levels: dict[str, int] = {}
            visiting: set[str] = set()

            def level_of(node_id: str) -> int:
                if node_id in levels:
                    return levels[node_id]
                if node_id in visiting:
                    raise CycleDetectedError()
                visiting.add(node_id)
                level = 1 + max(
                    (level_of(dep) for dep in self._present_deps(node_id)), default=-1
                )
                visiting.discard(node_id)
                levels[node_id] = level
                return level

            for node_id in self._nodes:
                level_of(node_id)

            grouped: dict[int, list[str]] = {}
            for node_id, level in levels.items():
                grouped.setdefault(level, []).append(node_id)
            return [ParallelGroup(level, grouped[level]) for level in sorted(grouped)]

    def parallel_shutdown_groups(self) -> list[ParallelGroup]:
        """Startup groups in reverse order, renumbered from zero."""
        groups = self.parallel_startup_groups()
        return [
            ParallelGroup(level, group.nodes)
            for level, group in enumerate(reversed(groups))
        ]