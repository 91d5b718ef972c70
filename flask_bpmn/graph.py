"""
Dependency graph with Kahn's topological sort.
"""

from collections import deque
from typing import Dict, List

from .exceptions import DependencyCycleError


class DependencyGraph:
    """Directed graph where an edge ``a -> b`` means ``a`` comes before ``b``."""

    def __init__(self):
        self._adjacency: Dict[str, List[str]] = {}

    def add_vertex(self, vertex: str):
        self._adjacency.setdefault(vertex, [])

    def add_edge(self, source: str, target: str):
        if source not in self._adjacency:
            raise ValueError(f"Vertex {source} does not exist in the graph.")
        self.add_vertex(target)
        self._adjacency[source].append(target)

    @property
    def vertices(self) -> List[str]:
        return list(self._adjacency)

    def topological_sort(self) -> List[str]:
        """
        Order vertices so every edge points forward.

        Vertices with no ordering constraint keep insertion order.

        Raises:
            DependencyCycleError: naming the vertices left on a cycle
        """
        in_degree = {vertex: 0 for vertex in self._adjacency}
        for neighbors in self._adjacency.values():
            for neighbor in neighbors:
                in_degree[neighbor] += 1

        queue = deque(vertex for vertex, degree in in_degree.items() if degree == 0)
        result = []

        while queue:
            vertex = queue.popleft()
            result.append(vertex)
            for neighbor in self._adjacency[vertex]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(result) != len(self._adjacency):
            missing = [vertex for vertex in self._adjacency if vertex not in result]
            raise DependencyCycleError(
                "Circular dependency detected. Topological sorting is not possible.",
                result=result,
                missing_vertices=missing,
            )

        return result
