"""Directed graph of module versions built while resolving dependencies."""

from collections import deque
from typing import Iterable, List, NamedTuple, Optional, Tuple

import networkx as nx

from ..errors import DependencyCycleError, VertexNotFoundError


class ModuleVersion(NamedTuple):
    """A vertex of the dependency graph: a module path at one version."""
    path: str
    version: str = ""

    def __str__(self) -> str:
        if self.version:
            return f"{self.path}@{self.version}"
        return self.path


class DepGraph:
    """Acyclic graph of ``ModuleVersion`` vertices.

    An edge ``parent -> child`` means ``parent`` requires ``child``. Adding a
    vertex twice is a no-op; adding an edge that would close a cycle is
    rejected and leaves the graph unchanged.
    """

    def __init__(self):
        self._graph = nx.DiGraph()

    def __contains__(self, vertex) -> bool:
        return vertex in self._graph

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    def add_vertex(self, path: str, version: str = "", source: Optional[str] = None) -> ModuleVersion:
        """Add ``path@version`` and return its vertex.

        ``source`` is remembered so versions of the module can be listed later;
        it only fills in a missing value and never overwrites a known one.
        """
        vertex = ModuleVersion(path, version or "")
        if vertex not in self._graph:
            self._graph.add_node(vertex, source=source)
        elif source and not self._graph.nodes[vertex].get("source"):
            self._graph.nodes[vertex]["source"] = source
        return vertex

    def add_edge(self, parent: ModuleVersion, child: ModuleVersion) -> None:
        """Record that ``parent`` requires ``child``.

        Missing vertices are added first.

        Raises:
            DependencyCycleError: If ``child`` already reaches ``parent``
        """
        parent = ModuleVersion(*parent)
        child = ModuleVersion(*child)
        if parent == child or (
            parent in self._graph and child in self._graph and nx.has_path(self._graph, child, parent)
        ):
            raise DependencyCycleError(str(parent), str(child))
        self.add_vertex(parent.path, parent.version)
        self.add_vertex(child.path, child.version)
        self._graph.add_edge(parent, child)

    def source_of(self, vertex: ModuleVersion) -> Optional[str]:
        if vertex not in self._graph:
            raise VertexNotFoundError(str(vertex))
        return self._graph.nodes[vertex].get("source")

    def required(self, vertex: ModuleVersion) -> List[ModuleVersion]:
        """Direct requirements of ``vertex``, in the order they were added.

        Raises:
            VertexNotFoundError: If ``vertex`` is not in the graph
        """
        vertex = ModuleVersion(*vertex)
        if vertex not in self._graph:
            raise VertexNotFoundError(str(vertex))
        return list(self._graph.successors(vertex))

    def vertices(self) -> List[ModuleVersion]:
        return list(self._graph.nodes)

    def edges(self) -> List[Tuple[ModuleVersion, ModuleVersion]]:
        return list(self._graph.edges)

    def find_sources(self) -> List[ModuleVersion]:
        """Vertices nothing depends on."""
        return [v for v, degree in self._graph.in_degree() if degree == 0]

    def union(self, other: "DepGraph") -> "DepGraph":
        """New graph holding the vertices and edges of both graphs.

        Raises:
            DependencyCycleError: If the combined edges form a cycle
        """
        merged = DepGraph()
        for graph in (self, other):
            for vertex, data in graph._graph.nodes(data=True):
                merged.add_vertex(vertex.path, vertex.version, data.get("source"))
        for graph in (self, other):
            for parent, child in graph.edges():
                if not merged._graph.has_edge(parent, child):
                    merged.add_edge(parent, child)
        return merged

    def display_from(self, start: ModuleVersion) -> str:
        """Render the edges reachable from ``start`` as ``parent child`` lines.

        Edges are listed breadth first, each vertex expanded once.
        """
        start = ModuleVersion(*start)
        if start not in self._graph:
            raise VertexNotFoundError(str(start))

        lines = []
        seen = {start}
        queue = deque([start])
        while queue:
            parent = queue.popleft()
            for child in self._graph.successors(parent):
                lines.append(f"{parent} {child}")
                if child not in seen:
                    seen.add(child)
                    queue.append(child)
        return "".join(f"{line}\n" for line in lines)

    @classmethod
    def from_edges(cls, edges: Iterable[Tuple[ModuleVersion, ModuleVersion]]) -> "DepGraph":
        graph = cls()
        for parent, child in edges:
            graph.add_edge(parent, child)
        return graph
