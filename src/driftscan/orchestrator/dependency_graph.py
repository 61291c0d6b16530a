"""Dependency graph used to order reconciliation steps."""

import heapq
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from driftscan.state.models import Environment, ResourceDeclaration
from driftscan.utils.errors import CyclicDependencyError, DependencyError, ErrorContext


class DependencyGraph:
    """Directed graph of declared resource dependencies.

    Resources are stored by their declaration index; edges point from a
    dependency to the resources that depend on it. Ties in ordering are broken
    by declaration index, so independent resources keep declaration order.
    """

    def __init__(self, environment: Optional[str] = None):
        """Initialize an empty graph.

        Args:
            environment: Environment name used in error context
        """
        self.environment = environment
        self._ids: List[str] = []
        self._index: Dict[str, int] = {}
        self._declared_deps: List[List[str]] = []
        self._dependencies: List[Set[int]] = []
        self._dependents: List[Set[int]] = []
        self._resolved = True

    @classmethod
    def from_environment(cls, environment: Environment) -> "DependencyGraph":
        """Build and validate the graph of an environment's declarations.

        Raises:
            DependencyError: If a dependency is not declared
            CyclicDependencyError: If the dependencies contain a cycle
        """
        graph = cls(environment.name)
        for declaration in environment.declarations:
            graph.add_resource(declaration)
        graph.validate()
        return graph

    def add_resource(self, declaration: ResourceDeclaration) -> None:
        """Add a declared resource.

        Dependencies may reference resources added later; they are resolved
        when the graph is validated.

        Raises:
            DependencyError: If the identifier was already added
        """
        if declaration.id in self._index:
            raise DependencyError(
                f"Resource '{declaration.id}' is declared twice",
                context=self._context(declaration.id)
            )
        self._index[declaration.id] = len(self._ids)
        self._ids.append(declaration.id)
        self._declared_deps.append(list(declaration.dependencies))
        self._dependencies.append(set())
        self._dependents.append(set())
        self._resolved = False

    def validate(self) -> None:
        """Resolve edges and check the graph.

        Raises:
            DependencyError: If a resource depends on an undeclared resource
            CyclicDependencyError: If the dependencies contain a cycle
        """
        self._resolve()
        cycle = self.detect_cycle()
        if cycle:
            raise CyclicDependencyError(
                f"Circular dependency detected: {' -> '.join(cycle)}",
                cycle=cycle,
                context=self._context(cycle[0]),
                suggestions=["Remove one of the dependencies in the cycle"]
            )

    def detect_cycle(self) -> Optional[List[str]]:
        """Find a dependency cycle.

        Returns:
            Path such as ``['a', 'b', 'a']`` where each resource depends on the
            next, or None if the graph is acyclic
        """
        self._resolve()
        # 0 = unvisited, 1 = on the current path, 2 = done
        state = [0] * len(self._ids)

        for start in range(len(self._ids)):
            if state[start]:
                continue
            path = [start]
            stack = [iter(sorted(self._dependencies[start]))]
            state[start] = 1
            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    state[path.pop()] = 2
                    stack.pop()
                elif state[nxt] == 1:
                    cycle = path[path.index(nxt):] + [nxt]
                    return [self._ids[i] for i in cycle]
                elif state[nxt] == 0:
                    state[nxt] = 1
                    path.append(nxt)
                    stack.append(iter(sorted(self._dependencies[nxt])))
        return None

    def topological_sort(self) -> List[str]:
        """Order resources so every dependency precedes its dependents.

        Returns:
            Resource identifiers; among resources whose dependencies are all
            placed, the one declared first comes first

        Raises:
            CyclicDependencyError: If no order exists
        """
        self._resolve()
        in_degree = [len(deps) for deps in self._dependencies]
        ready = [i for i, degree in enumerate(in_degree) if degree == 0]
        heapq.heapify(ready)
        order: List[int] = []

        while ready:
            current = heapq.heappop(ready)
            order.append(current)
            for dependent in self._dependents[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(order) != len(self._ids):
            # validate() raises with the offending cycle
            self.validate()
            raise CyclicDependencyError(
                "Cannot order resources: graph contains a cycle",
                context=self._context(None)
            )
        return [self._ids[i] for i in order]

    def get_waves(self) -> List[List[str]]:
        """Group resources into waves with no dependencies inside a wave.

        A resource lands in the wave after its deepest dependency.

        Raises:
            CyclicDependencyError: If the graph contains a cycle
        """
        level: Dict[int, int] = {}
        waves: List[List[str]] = []
        for resource_id in self.topological_sort():
            index = self._index[resource_id]
            depth = max((level[dep] + 1 for dep in self._dependencies[index]), default=0)
            level[index] = depth
            if depth == len(waves):
                waves.append([])
            waves[depth].append(resource_id)
        return [sorted(wave, key=self._index.__getitem__) for wave in waves]

    def get_dependencies(self, resource_id: str) -> List[str]:
        """Direct dependencies of a resource in declaration order."""
        self._resolve()
        return self._names(self._dependencies[self._require(resource_id)])

    def get_dependents(self, resource_id: str) -> List[str]:
        """Resources that directly depend on a resource."""
        self._resolve()
        return self._names(self._dependents[self._require(resource_id)])

    def get_all_dependencies(self, resource_id: str) -> List[str]:
        """Transitive dependencies of a resource."""
        self._resolve()
        return self._names(self._walk(self._require(resource_id), self._dependencies))

    def get_all_dependents(self, resource_id: str) -> List[str]:
        """Transitive dependents of a resource."""
        self._resolve()
        return self._names(self._walk(self._require(resource_id), self._dependents))

    def roots(self) -> List[str]:
        """Resources without dependencies."""
        self._resolve()
        return [rid for i, rid in enumerate(self._ids) if not self._dependencies[i]]

    def has_resource(self, resource_id: str) -> bool:
        return resource_id in self._index

    def position(self, resource_id: str) -> int:
        """Declaration index of a resource."""
        return self._require(resource_id)

    def size(self) -> int:
        return len(self._ids)

    def _resolve(self) -> None:
        if self._resolved:
            return
        for i, deps in enumerate(self._declared_deps):
            for dep_id in deps:
                dep = self._index.get(dep_id)
                if dep is None:
                    raise DependencyError(
                        f"Resource '{self._ids[i]}' depends on '{dep_id}' which is not declared",
                        context=self._context(self._ids[i])
                    )
                self._dependencies[i].add(dep)
                self._dependents[dep].add(i)
        self._resolved = True

    def _require(self, resource_id: str) -> int:
        index = self._index.get(resource_id)
        if index is None:
            raise DependencyError(
                f"Resource '{resource_id}' is not in the graph",
                context=self._context(resource_id)
            )
        return index

    def _names(self, indices: Iterable[int]) -> List[str]:
        return [self._ids[i] for i in sorted(indices)]

    @staticmethod
    def _walk(start: int, edges: List[Set[int]]) -> Set[int]:
        visited: Set[int] = set()
        queue = deque(edges[start])
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            queue.extend(edges[current] - visited)
        visited.discard(start)
        return visited

    def _context(self, resource_id: Optional[str]) -> ErrorContext:
        return ErrorContext(
            environment=self.environment,
            resource_id=resource_id,
            operation="graph"
        )
