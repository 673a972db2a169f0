"""Resource providers: the interface the executor drives, plus a simulated backend."""

from .base import CreateResult, ProviderRegistry, ResourceProvider
from .catalog import RESOURCE_TYPES, ResourceType, get_resource_type
from .memory import InMemoryProvider, build_simulated_registry

__all__ = [
    'CreateResult',
    'ProviderRegistry',
    'ResourceProvider',
    'RESOURCE_TYPES',
    'ResourceType',
    'get_resource_type',
    'InMemoryProvider',
    'build_simulated_registry',
]
