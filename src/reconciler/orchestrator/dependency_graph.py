"""Dependency graph builder and wave resolver for resource ordering."""

from typing import Dict, Iterable, List, Optional, Set
from dataclasses import dataclass, field
from collections import defaultdict, deque

from reconciler.orchestrator.references import reference_targets
from reconciler.state.models import ResourceSpec
from reconciler.utils.errors import CycleError, DuplicateResourceError, ReferenceError
from reconciler.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ResourceNode:
    """Node in the dependency graph."""

    resource_id: str
    spec: Optional[ResourceSpec]
    dependencies: Set[str]  # Resource IDs this node depends on
    dependents: Set[str] = field(default_factory=set)  # Resource IDs that depend on this node
    reference_targets: Set[str] = field(default_factory=set)  # Dependencies coming from attribute references


class DependencyGraph:
    """Directed graph of resource dependencies."""

    def __init__(self):
        """Initialize empty dependency graph."""
        self.nodes: Dict[str, ResourceNode] = {}
        self._adjacency_list: Dict[str, Set[str]] = defaultdict(set)

    def add_resource(self, spec: ResourceSpec) -> ResourceNode:
        """Add a desired resource, deriving edges from depends_on and references.

        Args:
            spec: Resource to add to the graph

        Raises:
            DuplicateResourceError: If the identity is already in the graph
        """
        targets = reference_targets(spec.attributes)
        return self.add_node(
            spec.id,
            dependencies=set(spec.depends_on) | targets,
            spec=spec,
            reference_targets=targets
        )

    def add_node(
        self,
        resource_id: str,
        dependencies: Iterable[str],
        spec: Optional[ResourceSpec] = None,
        reference_targets: Iterable[str] = ()
    ) -> ResourceNode:
        """Add a node with explicit dependency identities.

        Args:
            resource_id: Identity of the node
            dependencies: Identities this node depends on
            spec: Desired resource, if any
            reference_targets: Subset of dependencies that come from references

        Raises:
            DuplicateResourceError: If the identity is already in the graph
        """
        if resource_id in self.nodes:
            raise DuplicateResourceError(
                f"Resource '{resource_id}' is declared more than once",
                identity=resource_id
            )

        node = ResourceNode(
            resource_id=resource_id,
            spec=spec,
            dependencies=set(dependencies),
            reference_targets=set(reference_targets)
        )
        self.nodes[resource_id] = node

        for dep_id in node.dependencies:
            self._adjacency_list[dep_id].add(resource_id)
            if dep_id in self.nodes:
                self.nodes[dep_id].dependents.add(resource_id)

        # Dependents added before this node
        node.dependents = set(self._adjacency_list[resource_id])
        return node

    def get_dependencies(self, resource_id: str) -> Set[str]:
        """Get direct dependencies of a resource."""
        if resource_id not in self.nodes:
            return set()
        return self.nodes[resource_id].dependencies.copy()

    def get_dependents(self, resource_id: str) -> Set[str]:
        """Get direct dependents of a resource."""
        return self._adjacency_list.get(resource_id, set()).copy()

    def get_all_dependencies(self, resource_id: str) -> Set[str]:
        """Get all transitive dependencies of a resource."""
        return self._closure(resource_id, self.get_dependencies)

    def get_all_dependents(self, resource_id: str) -> Set[str]:
        """Get all transitive dependents of a resource."""
        return self._closure(resource_id, self.get_dependents)

    def _closure(self, resource_id: str, neighbours) -> Set[str]:
        visited = set()
        queue = deque([resource_id])

        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue
            visited.add(current_id)
            for next_id in neighbours(current_id):
                if next_id not in visited:
                    queue.append(next_id)

        visited.discard(resource_id)
        return visited

    def detect_circular_dependencies(self, within: Optional[Set[str]] = None) -> Optional[List[str]]:
        """Find one cycle in the graph.

        Args:
            within: Only consider these identities

        Returns:
            Cycle as a dependency path that starts and ends on the same
            identity (``a -> b -> a`` means a depends on b depends on a),
            or None if there is no cycle
        """
        candidates = set(self.nodes) if within is None else within
        # White (0): unvisited, Gray (1): on the current path, Black (2): done
        color = {node_id: 0 for node_id in candidates}
        path: List[str] = []

        def dfs(node_id: str) -> Optional[List[str]]:
            color[node_id] = 1
            path.append(node_id)

            for dep_id in sorted(self.nodes[node_id].dependencies & candidates):
                if color[dep_id] == 1:
                    return path[path.index(dep_id):] + [dep_id]
                if color[dep_id] == 0:
                    cycle = dfs(dep_id)
                    if cycle:
                        return cycle

            path.pop()
            color[node_id] = 2
            return None

        for node_id in sorted(candidates):
            if color[node_id] == 0:
                cycle = dfs(node_id)
                if cycle:
                    return cycle

        return None

    def validate(self) -> None:
        """Check that every dependency is a node of the graph.

        Raises:
            ReferenceError: On the first (in identity order) dangling dependency
        """
        for node_id in sorted(self.nodes):
            node = self.nodes[node_id]
            for dep_id in sorted(node.dependencies):
                if dep_id in self.nodes:
                    continue
                kind = "references" if dep_id in node.reference_targets else "depends on"
                raise ReferenceError(
                    f"Resource '{node_id}' {kind} '{dep_id}' which is not declared",
                    source=node_id,
                    target=dep_id
                )

    def get_waves(self) -> List[List[str]]:
        """Group resources into waves by repeatedly removing zero in-degree nodes.

        Resources in the same wave have no dependencies on each other. Each
        wave is sorted by identity, so unchanged input gives an identical
        ordering.

        Returns:
            List of waves, dependencies before dependents

        Raises:
            ReferenceError: If a dependency is not in the graph
            CycleError: If the graph contains cycles
        """
        self.validate()

        in_degree = {node_id: len(node.dependencies) for node_id, node in self.nodes.items()}
        current_wave = sorted(node_id for node_id, degree in in_degree.items() if degree == 0)
        waves = []

        while current_wave:
            waves.append(current_wave)
            next_wave = []

            for node_id in current_wave:
                for dependent_id in self._adjacency_list[node_id]:
                    in_degree[dependent_id] -= 1
                    if in_degree[dependent_id] == 0:
                        next_wave.append(dependent_id)

            current_wave = sorted(next_wave)

        processed = sum(len(wave) for wave in waves)
        if processed != len(self.nodes):
            remaining = set(self.nodes) - {node_id for wave in waves for node_id in wave}
            raise self._cycle_error(remaining)

        return waves

    def _cycle_error(self, remaining: Set[str]) -> CycleError:
        # Drop nodes that are only downstream of a cycle: nothing left depends on them
        participants = set(remaining)
        pruned = True
        while pruned:
            pruned = False
            for node_id in sorted(participants):
                if not (self._adjacency_list[node_id] & participants):
                    participants.discard(node_id)
                    pruned = True

        cycle = self.detect_circular_dependencies(within=participants) or sorted(participants)
        logger.error(f"Circular dependency among: {', '.join(sorted(participants))}")
        return CycleError(
            f"Circular dependency detected: {' -> '.join(cycle)}",
            identities=participants
        )

    def topological_sort(self) -> List[str]:
        """Flatten the waves into a single dependency order."""
        return [node_id for wave in self.get_waves() for node_id in wave]

    def get_destruction_waves(self) -> List[List[str]]:
        """Waves in reverse order: dependents are removed before dependencies."""
        return list(reversed(self.get_waves()))

    def size(self) -> int:
        return len(self.nodes)

    def is_empty(self) -> bool:
        return len(self.nodes) == 0


def build_graph(specs: Iterable[ResourceSpec]) -> DependencyGraph:
    """Build and validate the dependency graph of a desired resource set.

    Args:
        specs: Desired resources

    Returns:
        DependencyGraph with edges from depends_on and attribute references

    Raises:
        DuplicateResourceError: If two specs share an identity
        ReferenceError: If a spec depends on or references an undeclared identity
    """
    graph = DependencyGraph()
    for spec in specs:
        graph.add_resource(spec)
    graph.validate()

    logger.debug(f"Built dependency graph with {graph.size()} resources")
    return graph
