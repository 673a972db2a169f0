"""Desired-state and applied-state data models."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

IDENTIFIER_PATTERN = r"^[A-Za-z0-9_-]+$"
_PART = r"[A-Za-z0-9_-]+"

# ${type.name} or ${type.name.attribute}
REFERENCE_PATTERN = re.compile(r"\$\{(" + _PART + r")\.(" + _PART + r")(?:\.(" + _PART + r"))?\}")
IDENTITY_PATTERN = re.compile(r"^(" + _PART + r")\.(" + _PART + r")$")

# Attribute of a reference that resolves to the provider-assigned id
ID_ATTRIBUTE = "id"


def resource_id(resource_type: str, name: str) -> str:
    """Build the identity string for a resource."""
    return f"{resource_type}.{name}"


@dataclass(frozen=True)
class Reference:
    """Points at a computed value of another resource.

    ``attribute`` is either ``id`` (the provider-assigned id) or the name of
    an output returned by the provider when the target was applied.
    """

    target: str
    attribute: str = ID_ATTRIBUTE

    def __post_init__(self):
        if not IDENTITY_PATTERN.match(self.target):
            raise ValueError(f"Invalid reference target: {self.target!r}")
        if not re.match(IDENTIFIER_PATTERN, self.attribute):
            raise ValueError(f"Invalid reference attribute: {self.attribute!r}")

    @property
    def expression(self) -> str:
        """Expression form stored in attribute snapshots."""
        return "${" + f"{self.target}.{self.attribute}" + "}"

    @classmethod
    def from_match(cls, match: "re.Match[str]") -> "Reference":
        resource_type, name, attribute = match.groups()
        return cls(target=resource_id(resource_type, name), attribute=attribute or ID_ATTRIBUTE)

    def __str__(self) -> str:
        return self.expression


def ref(target: str, attribute: str = ID_ATTRIBUTE) -> Reference:
    """Shorthand for building a Reference."""
    return Reference(target=target, attribute=attribute)


def _normalize_value(value: Any, path: str) -> Any:
    """Normalize an attribute value to its JSON-compatible snapshot form."""
    if isinstance(value, Reference):
        return value.expression
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple)):
        return [_normalize_value(item, f"{path}[{i}]") for i, item in enumerate(value)]
    if isinstance(value, dict):
        normalized = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"Attribute keys must be strings: {path}.{key!r}")
            normalized[key] = _normalize_value(item, f"{path}.{key}")
        return normalized
    raise ValueError(
        f"Unsupported attribute value at {path}: {type(value).__name__} "
        "(expected scalar, list, mapping or reference)"
    )


class ResourceSpec(BaseModel):
    """Declared desired state of one resource."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., pattern=IDENTIFIER_PATTERN, description="Resource type (e.g. network)")
    name: str = Field(..., pattern=IDENTIFIER_PATTERN, description="Logical resource name")
    attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Attribute values, references allowed"
    )
    depends_on: List[str] = Field(
        default_factory=list, description="Explicit dependency identities"
    )

    @field_validator("attributes", mode="before")
    @classmethod
    def normalize_attributes(cls, v: Any) -> Dict[str, Any]:
        """Turn Reference objects into expressions and tuples into lists."""
        if not isinstance(v, dict):
            raise ValueError("attributes must be a mapping")
        return _normalize_value(v, "attributes")

    @field_validator("depends_on", mode="before")
    @classmethod
    def validate_depends_on(cls, v: Any) -> List[str]:
        """Accept identities or Reference objects, dropping duplicates."""
        identities: List[str] = []
        for item in v or []:
            identity = item.target if isinstance(item, Reference) else item
            if not isinstance(identity, str) or not IDENTITY_PATTERN.match(identity):
                raise ValueError(f"Invalid dependency identity: {identity!r}")
            if identity not in identities:
                identities.append(identity)
        return identities

    @property
    def id(self) -> str:
        """Resource identity (``type.name``)."""
        return resource_id(self.type, self.name)


class AppliedState(BaseModel):
    """Durable record of what was last applied for one resource."""

    id: str = Field(..., description="Resource identity (type.name)")
    type: str = Field(..., description="Resource type")
    provider_id: str = Field(..., description="Provider-assigned id")
    attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Attribute snapshot as declared when applied"
    )
    outputs: Dict[str, Any] = Field(
        default_factory=dict, description="Computed values returned by the provider"
    )
    resolved_references: Dict[str, Any] = Field(
        default_factory=dict, description="Value each reference expression resolved to when applied"
    )
    dependencies: List[str] = Field(
        default_factory=list, description="Identities this resource depended on when applied"
    )
    applied_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Last applied timestamp"
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppliedState":
        """Create AppliedState from dictionary."""
        return cls.model_validate(data)
