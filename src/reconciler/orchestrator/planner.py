"""Plan builder: diffs desired resources against applied state."""

from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Set
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone

from reconciler.orchestrator.dependency_graph import DependencyGraph, build_graph
from reconciler.orchestrator.references import ResolvedValues, find_references, reference_targets
from reconciler.state.models import AppliedState, ResourceSpec
from reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class Action(Enum):
    """Action planned for a resource."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"  # delete, then create
    NO_OP = "no_op"


@dataclass
class PlanEntry:
    """Planned action for one resource."""

    resource_id: str
    resource_type: str
    action: Action
    reason: str = ""
    prerequisites: Set[str] = field(default_factory=set)  # Entries that must succeed first
    desired: Optional[ResourceSpec] = None
    current: Optional[AppliedState] = None
    changed_attributes: List[str] = field(default_factory=list)


@dataclass
class PlanWave:
    """Entries with no unresolved dependencies on each other."""

    wave_number: int
    entries: List[PlanEntry] = field(default_factory=list)

    @property
    def resource_ids(self) -> List[str]:
        return [entry.resource_id for entry in self.entries]

    def get_entry(self, resource_id: str) -> Optional[PlanEntry]:
        for entry in self.entries:
            if entry.resource_id == resource_id:
                return entry
        return None

    def size(self) -> int:
        return len(self.entries)


@dataclass
class Plan:
    """Ordered waves of planned actions."""

    waves: List[PlanWave] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def entries(self) -> Iterator[PlanEntry]:
        """All entries in execution order."""
        for wave in self.waves:
            yield from wave.entries

    def get_entry(self, resource_id: str) -> Optional[PlanEntry]:
        for entry in self.entries():
            if entry.resource_id == resource_id:
                return entry
        return None

    def actions(self) -> Dict[str, Action]:
        """Planned action per identity."""
        return {entry.resource_id: entry.action for entry in self.entries()}

    def has_changes(self) -> bool:
        return any(entry.action != Action.NO_OP for entry in self.entries())

    def pending_waves(self) -> List[PlanWave]:
        """Waves without no-op entries, empty waves dropped and renumbered."""
        pending = []
        for wave in self.waves:
            entries = [entry for entry in wave.entries if entry.action != Action.NO_OP]
            if entries:
                pending.append(PlanWave(wave_number=len(pending), entries=entries))
        return pending

    def get_summary(self) -> Dict[str, int]:
        """Number of entries per action."""
        summary = {action.value: 0 for action in Action}
        for entry in self.entries():
            summary[entry.action.value] += 1
        return summary


class Planner:
    """Creates plans by comparing desired resources with applied state."""

    def __init__(self, immutable_attributes: Optional[Callable[[str], FrozenSet[str]]] = None):
        """Initialize planner.

        Args:
            immutable_attributes: Returns the attributes of a resource type
                whose change forces replacement
        """
        self.immutable_attributes = immutable_attributes or (lambda resource_type: frozenset())
        self.logger = get_logger(__name__)

    def create_plan(
        self,
        desired: Iterable[ResourceSpec],
        applied: Mapping[str, AppliedState]
    ) -> Plan:
        """Create a plan for a desired resource set.

        Args:
            desired: Desired resources
            applied: Last applied state by identity

        Returns:
            Plan whose waves put dependencies before dependents, followed by
            deletion waves for applied resources no longer desired

        Raises:
            ReferenceError: If a resource references an undeclared identity
            CycleError: If the dependencies form a cycle
            DuplicateResourceError: If an identity is declared twice
        """
        self.logger.info("Creating plan...")

        graph = build_graph(desired)
        wave_ids = graph.get_waves()
        values = ResolvedValues(applied)

        entries: Dict[str, PlanEntry] = {}
        for resource_id in (rid for wave in wave_ids for rid in wave):
            node = graph.nodes[resource_id]
            entries[resource_id] = self._diff(node.spec, applied.get(resource_id), node.dependencies, values)

        self._propagate_replacements(graph, wave_ids, entries)

        waves = [
            PlanWave(wave_number=number, entries=[entries[rid] for rid in wave])
            for number, wave in enumerate(wave_ids)
        ]

        for wave_entries in self._plan_deletions(applied, set(entries)):
            waves.append(PlanWave(wave_number=len(waves), entries=wave_entries))

        plan = Plan(waves=waves)
        summary = plan.get_summary()
        self.logger.info(
            f"Plan created: {summary['create']} create, {summary['update']} update, "
            f"{summary['replace']} replace, {summary['delete']} delete, "
            f"{summary['no_op']} unchanged, {len(waves)} waves"
        )
        return plan

    def _diff(
        self,
        spec: ResourceSpec,
        current: Optional[AppliedState],
        dependencies: Set[str],
        values: ResolvedValues
    ) -> PlanEntry:
        entry = PlanEntry(
            resource_id=spec.id,
            resource_type=spec.type,
            action=Action.NO_OP,
            prerequisites=set(dependencies),
            desired=spec,
            current=current
        )

        if current is None:
            entry.action = Action.CREATE
            entry.reason = "Resource does not exist"
            return entry

        declared = self._changed_attributes(current.attributes, spec.attributes)
        stale = self._stale_attributes(current, spec.attributes, values, exclude=declared)
        changed = sorted(set(declared) | set(stale))
        entry.changed_attributes = changed
        if not changed:
            entry.reason = "No changes detected"
            return entry

        forcing = [name for name in changed if name in self.immutable_attributes(spec.type)]
        if forcing:
            entry.action = Action.REPLACE
            entry.reason = f"Immutable attribute(s) changed: {', '.join(forcing)}"
        elif declared:
            entry.action = Action.UPDATE
            entry.reason = f"Attribute(s) changed: {', '.join(changed)}"
        else:
            entry.action = Action.UPDATE
            entry.reason = f"Referenced value(s) changed: {', '.join(stale)}"
        return entry

    @staticmethod
    def _stale_attributes(
        current: AppliedState,
        desired: Mapping[str, Any],
        values: ResolvedValues,
        exclude: Iterable[str] = ()
    ) -> List[str]:
        """Attributes whose references resolved to values that are no longer current.

        Covers a dependent left behind when the resource it references was
        replaced in an earlier run but its own update never completed.
        """
        recorded = current.resolved_references
        stale = []
        for name, value in desired.items():
            if name in exclude:
                continue
            for reference in find_references(value):
                if reference.expression not in recorded:
                    continue
                if not values.is_current(reference, recorded[reference.expression]):
                    stale.append(name)
                    break
        return sorted(stale)

    @staticmethod
    def _changed_attributes(current: Mapping[str, Any], desired: Mapping[str, Any]) -> List[str]:
        """Names of attributes added, removed or modified."""
        names = set(current) | set(desired)
        return sorted(
            name for name in names
            if name not in current or name not in desired or current[name] != desired[name]
        )

    def _propagate_replacements(
        self,
        graph: DependencyGraph,
        wave_ids: List[List[str]],
        entries: Dict[str, PlanEntry]
    ) -> None:
        """Force a change on direct dependents that reference a replaced resource.

        A replaced resource gets a new provider id and new outputs, so every
        attribute referencing it resolves to a new value. Unchanged
        dependents are updated; dependents whose referencing attribute is
        immutable are replaced, which cascades further down in wave order.
        """
        for resource_id in (rid for wave in wave_ids for rid in wave):
            if entries[resource_id].action != Action.REPLACE:
                continue

            for dependent_id in sorted(graph.get_dependents(resource_id)):
                node = graph.nodes[dependent_id]
                dependent = entries[dependent_id]
                if resource_id not in node.reference_targets:
                    continue
                if dependent.action not in (Action.NO_OP, Action.UPDATE):
                    continue

                immutable = self.immutable_attributes(dependent.resource_type)
                forcing = sorted(
                    name for name, value in node.spec.attributes.items()
                    if name in immutable and resource_id in reference_targets({name: value})
                )
                if forcing:
                    dependent.action = Action.REPLACE
                    dependent.reason = (
                        f"Immutable attribute(s) {', '.join(forcing)} reference "
                        f"replaced resource '{resource_id}'"
                    )
                elif dependent.action == Action.NO_OP:
                    dependent.action = Action.UPDATE
                    dependent.reason = f"Referenced resource '{resource_id}' is replaced"
                else:
                    continue
                self.logger.debug(f"Forcing {dependent.action.value} of {dependent_id}: {dependent.reason}")

    def _plan_deletions(
        self,
        applied: Mapping[str, AppliedState],
        desired_ids: Set[str]
    ) -> List[List[PlanEntry]]:
        """Delete waves for applied resources that are no longer desired.

        Ordered with the dependencies recorded at apply time, dependents
        first. Each delete waits for the deletion of the orphans that
        depended on it, and for the entries of kept resources whose
        recorded state still depends on it.
        """
        orphans = {rid: state for rid, state in applied.items() if rid not in desired_ids}
        if not orphans:
            return []

        graph = DependencyGraph()
        for resource_id in sorted(orphans):
            state = orphans[resource_id]
            graph.add_node(resource_id, set(state.dependencies) & set(orphans))

        kept_dependents: Dict[str, Set[str]] = {rid: set() for rid in orphans}
        for resource_id in desired_ids:
            state = applied.get(resource_id)
            if state is None:
                continue
            for dep_id in state.dependencies:
                if dep_id in kept_dependents:
                    kept_dependents[dep_id].add(resource_id)

        waves = []
        for wave in graph.get_destruction_waves():
            waves.append([
                PlanEntry(
                    resource_id=resource_id,
                    resource_type=orphans[resource_id].type,
                    action=Action.DELETE,
                    reason="Resource no longer declared",
                    prerequisites=graph.get_dependents(resource_id) | kept_dependents[resource_id],
                    current=orphans[resource_id]
                )
                for resource_id in wave
            ])
        return waves
