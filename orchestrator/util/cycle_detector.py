"""
Orchestrator Cycle Detection - Incremental Dependency Graph
===========================================================

This module maintains a directed dependency graph and detects cycles as edges
are added, so a cycle is reported at the moment it would be closed rather than
discovered later as unbounded recursion or a future that never settles.

It is used in two places:

- Spec normalization feeds it every dependency edge that cannot be avoided
  (edges out of keys with a single derivation path). A cycle there can never
  resolve, so the spec is rejected.
- Each resolution scope keeps one as its wait graph: an edge ``dep -> key`` is
  present while ``key`` is waiting on ``dep``. An edge that would close a cycle
  means the waits would deadlock, so the waiting path fails instead.

Usage:
    graph = IncrementalDependencyGraph()

    # Add dependencies (from_node -> to_node means to_node depends on from_node)
    graph.add_edge("account_id", "account")
    graph.add_edge("account", "balance")

    try:
        graph.add_edge("balance", "account_id")  # Would create cycle!
    except CircularDependencyError as e:
        print(f"Cycle detected: {e}")
"""

from collections import defaultdict
from typing import Dict, Generic, Hashable, List, Optional, Set, TypeVar

from ..errors import CircularDependencyError

T = TypeVar("T", bound=Hashable)


class IncrementalDependencyGraph(Generic[T]):
    """
    Directed dependency graph that refuses edges which would create a cycle.

    The graph represents dependencies: edge A -> B means B depends on A.
    Nodes are dropped automatically once their last edge is removed, which
    keeps a long-lived wait graph from accumulating settled keys.

    Attributes:
        graph: Forward edges (node -> set of nodes that depend on it)
        reverse_graph: Reverse edges (node -> set of nodes it depends on)
    """

    def __init__(self):
        self.graph: Dict[T, Set[T]] = defaultdict(set)  # node -> dependents
        self.reverse_graph: Dict[T, Set[T]] = defaultdict(set)  # node -> dependencies

    def add_edge(self, from_node: T, to_node: T) -> bool:
        """
        Add a directed edge from_node -> to_node.

        This represents: to_node depends on from_node.

        Args:
            from_node: Source node (dependency)
            to_node: Target node (dependent)

        Returns:
            True if the edge was added, False if it already existed

        Raises:
            CircularDependencyError: If adding the edge would create a cycle
        """
        if to_node in self.graph.get(from_node, ()):
            return False

        cycle = self.find_path(to_node, from_node)
        if cycle is not None:
            chain = " -> ".join(repr(node) for node in [from_node] + cycle)
            raise CircularDependencyError(
                f"Adding edge {from_node!r} -> {to_node!r} would create a cycle: {chain}"
            )

        self.graph[from_node].add(to_node)
        self.reverse_graph[to_node].add(from_node)
        return True

    def remove_edge(self, from_node: T, to_node: T) -> bool:
        """
        Remove a directed edge from_node -> to_node.

        Returns:
            True if edge was removed, False if it didn't exist
        """
        dependents = self.graph.get(from_node)
        if not dependents or to_node not in dependents:
            return False

        dependents.discard(to_node)
        self.reverse_graph[to_node].discard(from_node)
        self._prune(from_node)
        self._prune(to_node)
        return True

    def find_path(self, start: T, target: T) -> Optional[List[T]]:
        """
        Find a chain of dependents leading from start to target.

        Uses an iterative DFS so deep graphs don't hit the recursion limit.

        Returns:
            The nodes from start to target inclusive, or None if unreachable
        """
        if start == target:
            return [start]

        parents: Dict[T, T] = {}
        visited = {start}
        stack = [start]
        while stack:
            node = stack.pop()
            for dependent in self.graph.get(node, ()):
                if dependent in visited:
                    continue
                parents[dependent] = node
                if dependent == target:
                    path = [dependent]
                    while path[-1] != start:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                visited.add(dependent)
                stack.append(dependent)
        return None

    def get_dependencies(self, node: T) -> Set[T]:
        """Get all nodes that the given node depends on."""
        return set(self.reverse_graph.get(node, ()))

    def _prune(self, node: T) -> None:
        if not self.graph.get(node) and not self.reverse_graph.get(node):
            self.graph.pop(node, None)
            self.reverse_graph.pop(node, None)

    def __len__(self) -> int:
        """Return number of nodes in the graph."""
        return len(set(self.graph) | set(self.reverse_graph))

    def __contains__(self, node: T) -> bool:
        """Check if node exists in the graph."""
        return node in self.graph or node in self.reverse_graph

    def __str__(self) -> str:
        edges = sum(len(dependents) for dependents in self.graph.values())
        return f"IncrementalDependencyGraph(nodes={len(self)}, edges={edges})"
