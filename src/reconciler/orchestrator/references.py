"""Reference scanning and substitution for attribute values."""

from typing import Any, Dict, List, Mapping, Optional, Set

from reconciler.state.models import ID_ATTRIBUTE, REFERENCE_PATTERN, AppliedState, Reference
from reconciler.utils.errors import ErrorContext, PermanentProviderError


def find_references(value: Any) -> List[Reference]:
    """Collect every reference embedded in an attribute value, in order."""
    found: List[Reference] = []
    if isinstance(value, Reference):
        found.append(value)
    elif isinstance(value, str):
        found.extend(Reference.from_match(match) for match in REFERENCE_PATTERN.finditer(value))
    elif isinstance(value, (list, tuple)):
        for item in value:
            found.extend(find_references(item))
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(find_references(item))
    return found


def reference_targets(attributes: Mapping[str, Any]) -> Set[str]:
    """Identities referenced anywhere in an attribute mapping."""
    return {reference.target for reference in find_references(dict(attributes))}


class ResolvedValues:
    """Known provider ids and outputs of applied resources.

    Seeded from applied state and updated by the executor as resources are
    created, so references resolve to the latest values in the run.
    """

    def __init__(self, applied: Optional[Mapping[str, AppliedState]] = None):
        self._values: Dict[str, Dict[str, Any]] = {}
        for identity, state in (applied or {}).items():
            self.record(identity, state.provider_id, state.outputs)

    def record(self, identity: str, provider_id: str, outputs: Mapping[str, Any]) -> None:
        values = dict(outputs)
        values[ID_ATTRIBUTE] = provider_id
        self._values[identity] = values

    def forget(self, identity: str) -> None:
        self._values.pop(identity, None)

    def is_current(self, reference: Reference, recorded: Any) -> bool:
        """Whether a reference still resolves to a previously recorded value."""
        values = self._values.get(reference.target)
        if values is None or reference.attribute not in values:
            return False
        return values[reference.attribute] == recorded

    def lookup(self, reference: Reference, source: Optional[str] = None) -> Any:
        """Value a reference currently points at.

        Raises:
            PermanentProviderError: If the target has not been applied or has
                no such output
        """
        values = self._values.get(reference.target)
        if values is None:
            raise PermanentProviderError(
                f"Reference {reference.expression} cannot be resolved: "
                f"'{reference.target}' has not been applied",
                code='unresolvedReference',
                context=ErrorContext(resource_id=source)
            )
        if reference.attribute not in values:
            raise PermanentProviderError(
                f"Reference {reference.expression} cannot be resolved: "
                f"'{reference.target}' has no output '{reference.attribute}'",
                code='unresolvedReference',
                context=ErrorContext(resource_id=source),
                suggestions=[f"Available outputs: {', '.join(sorted(values))}"]
            )
        return values[reference.attribute]

    def resolve(self, value: Any, source: Optional[str] = None) -> Any:
        """Substitute references in an attribute value.

        A string made of a single expression takes the referenced value as
        is; expressions embedded in longer strings are interpolated as text.
        """
        if isinstance(value, Reference):
            return self.lookup(value, source)
        if isinstance(value, str):
            whole = REFERENCE_PATTERN.fullmatch(value)
            if whole:
                return self.lookup(Reference.from_match(whole), source)
            return REFERENCE_PATTERN.sub(
                lambda match: str(self.lookup(Reference.from_match(match), source)), value
            )
        if isinstance(value, list):
            return [self.resolve(item, source) for item in value]
        if isinstance(value, dict):
            return {key: self.resolve(item, source) for key, item in value.items()}
        return value

    def resolve_attributes(self, attributes: Mapping[str, Any], source: Optional[str] = None) -> Dict[str, Any]:
        return {key: self.resolve(value, source) for key, value in attributes.items()}

    def resolve_references(self, attributes: Mapping[str, Any], source: Optional[str] = None) -> Dict[str, Any]:
        """Current value of every reference expression in an attribute mapping."""
        return {
            reference.expression: self.lookup(reference, source)
            for reference in find_references(dict(attributes))
        }
