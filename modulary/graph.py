"""
Declared dependency graph and depth-bounded cycle detection.
"""

from typing import Dict, Iterable, List, Optional, Protocol, Set
import logging

from .ids import ModuleId

logger = logging.getLogger("modulary.graph")


DEFAULT_MAX_DEPTH = 100


class EdgeSource(Protocol):
    """Read access to existing edges."""

    def dependencies_of(self, module_id: ModuleId) -> List[ModuleId]:
        ...


class DeclaredDependencyGraph:
    """
    Edges declared by registered modules.

    Nodes are every ModuleId that is registered or referenced as a
    dependency. Owned by the registry; the loader's fetch plan is a
    separate structure (see ``modulary.plan``).
    """

    def __init__(self):
        self._adjacency: Dict[ModuleId, List[ModuleId]] = {}

    def set_dependencies(self, module_id: ModuleId, dependencies: Iterable[ModuleId]) -> None:
        """
        Replace the outgoing edges of a node.

        Callers must have run cycle detection first.
        """
        deps = list(dict.fromkeys(dependencies))
        self._adjacency[module_id] = deps
        for dep in deps:
            self._adjacency.setdefault(dep, [])

    def dependencies_of(self, module_id: ModuleId) -> List[ModuleId]:
        return list(self._adjacency.get(module_id, []))

    def dependents_of(self, module_id: ModuleId) -> List[ModuleId]:
        """Reverse lookup: nodes with an edge to ``module_id``."""
        return [name for name, deps in self._adjacency.items() if module_id in deps]

    def __len__(self) -> int:
        return len(self._adjacency)

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._adjacency

    def __repr__(self) -> str:
        return f"DeclaredDependencyGraph({len(self._adjacency)} nodes)"


class _DepthExceeded(Exception):
    pass


class CycleDetector:
    """
    Depth-first cycle search over a proposed edge set.

    ``module_id`` uses ``proposed_deps`` as its edges; every other node
    uses the graph's existing edges. Fully explored nodes are memoized so
    diamond-shaped graphs are walked once.

    When the search goes deeper than ``max_depth`` a warning is logged and
    the result is "no cycle", unless ``overflow_is_cycle`` is set.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, *, overflow_is_cycle: bool = False):
        self.max_depth = max_depth
        self.overflow_is_cycle = overflow_is_cycle

    def find_cycle(
        self,
        module_id: ModuleId,
        proposed_deps: Iterable[ModuleId],
        graph: EdgeSource,
    ) -> Optional[List[ModuleId]]:
        """
        Find a cycle through the proposed edges.

        Returns:
            The nodes forming the cycle (first node repeated implicitly),
            or None
        """
        proposed = list(proposed_deps)
        path: List[ModuleId] = []
        visited: Set[ModuleId] = set()

        def edges(node: ModuleId) -> List[ModuleId]:
            if node == module_id:
                return proposed
            return graph.dependencies_of(node)

        def visit(node: ModuleId, depth: int) -> Optional[List[ModuleId]]:
            if depth > self.max_depth:
                raise _DepthExceeded()
            if node in path:
                return path[path.index(node):]
            if node in visited:
                return None

            path.append(node)
            for dep in edges(node):
                cycle = visit(dep, depth + 1)
                if cycle:
                    return cycle
            path.pop()
            visited.add(node)
            return None

        try:
            return visit(module_id, 0)
        except _DepthExceeded:
            logger.warning(
                f"Cycle search from {module_id} exceeded max depth {self.max_depth}; "
                f"treating as {'cyclic' if self.overflow_is_cycle else 'acyclic'}"
            )
            if self.overflow_is_cycle:
                return list(path)
            return None

    def has_cycle(
        self,
        module_id: ModuleId,
        proposed_deps: Iterable[ModuleId],
        graph: EdgeSource,
    ) -> bool:
        return self.find_cycle(module_id, proposed_deps, graph) is not None
