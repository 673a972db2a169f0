"""Base resource provider interface and registry."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List

from reconciler.config.models import ProviderSettings
from reconciler.utils.errors import ErrorContext, PermanentProviderError


@dataclass(frozen=True)
class CreateResult:
    """Outcome of a successful create call."""
    provider_id: str
    outputs: Dict[str, Any] = field(default_factory=dict)


class ResourceProvider(ABC):
    """Base class for all resource providers.

    One provider handles one resource type. Implementations must be safe to
    call concurrently for independent identities and report failures by
    raising ProviderError (TransientProviderError for retryable conditions).
    """

    resource_type: str = ""
    immutable_attributes: FrozenSet[str] = frozenset()

    def __init__(self, settings: ProviderSettings):
        """Initialize provider with explicit settings.

        Args:
            settings: Project and region the provider operates in
        """
        self.settings = settings

    @abstractmethod
    def create(self, attributes: Dict[str, Any]) -> CreateResult:
        """Create the resource.

        Args:
            attributes: Attribute values with references already resolved

        Returns:
            CreateResult with the provider-assigned id and computed outputs
        """

    @abstractmethod
    def update(self, provider_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Update the resource in place.

        Args:
            provider_id: Provider-assigned id from the create call
            attributes: Attribute values with references already resolved

        Returns:
            Computed outputs after the update
        """

    @abstractmethod
    def delete(self, provider_id: str) -> None:
        """Delete the resource.

        Args:
            provider_id: Provider-assigned id from the create call
        """


class ProviderRegistry:
    """Provider lookup by resource type."""

    def __init__(self, providers: Iterable[ResourceProvider] = ()):
        self._providers: Dict[str, ResourceProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: ResourceProvider) -> None:
        """Register a provider, replacing any provider for the same type."""
        if not provider.resource_type:
            raise ValueError(f"{type(provider).__name__} does not declare a resource_type")
        self._providers[provider.resource_type] = provider

    def get(self, resource_type: str) -> ResourceProvider:
        """Get the provider for a resource type.

        Raises:
            PermanentProviderError: If no provider handles the type
        """
        provider = self._providers.get(resource_type)
        if provider is None:
            raise PermanentProviderError(
                f"No provider registered for resource type: {resource_type}",
                code='unsupportedType',
                context=ErrorContext(resource_type=resource_type),
                suggestions=[f"Register a provider for '{resource_type}'"]
            )
        return provider

    def has(self, resource_type: str) -> bool:
        return resource_type in self._providers

    def types(self) -> List[str]:
        return sorted(self._providers)

    def immutable_attributes(self, resource_type: str) -> FrozenSet[str]:
        """Attributes of a type that cannot change without replacement."""
        provider = self._providers.get(resource_type)
        return provider.immutable_attributes if provider else frozenset()
