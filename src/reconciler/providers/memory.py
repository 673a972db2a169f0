"""Simulated provider that keeps resources in process memory."""

import ipaddress
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from reconciler.config.models import ProviderSettings
from reconciler.providers.base import CreateResult, ProviderRegistry, ResourceProvider
from reconciler.providers.catalog import RESOURCE_TYPES, ResourceType
from reconciler.utils.errors import ErrorContext, PermanentProviderError
from reconciler.utils.logging import get_logger

logger = get_logger(__name__)

OPERATIONS = ("create", "update", "delete")


@dataclass
class _ScriptedFailure:
    operation: str
    error: Exception
    remaining: int
    name: Optional[str] = None


class InMemoryProvider(ResourceProvider):
    """Provider for one catalog type that behaves like a compute API.

    Rejects duplicate names on create, changes to immutable attributes on
    update and unknown ids on update and delete. Failures can be scripted
    with ``fail()`` to exercise retry and partial-failure handling.
    """

    def __init__(self, resource_type: ResourceType, settings: ProviderSettings, latency: float = 0.0):
        """Initialize simulated provider.

        Args:
            resource_type: Catalog entry for the handled type
            settings: Project and region used in self links
            latency: Seconds each call blocks, to simulate network I/O
        """
        super().__init__(settings)
        self.type_info = resource_type
        self.resource_type = resource_type.name
        self.immutable_attributes = resource_type.immutable_attributes
        self.latency = latency

        self.resources: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.in_flight = 0
        self.peak_in_flight = 0

        self._failures: List[_ScriptedFailure] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def fail(self, operation: str, error: Exception, times: int = 1, name: Optional[str] = None) -> None:
        """Script the next ``times`` calls of an operation to raise ``error``.

        Args:
            operation: create, update or delete
            error: Error to raise
            times: Number of calls that fail
            name: Only fail calls for the resource with this ``name`` attribute
                (create and update) or provider id (delete)
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        with self._lock:
            self._failures.append(_ScriptedFailure(operation, error, times, name))

    def create(self, attributes: Dict[str, Any]) -> CreateResult:
        name = attributes.get("name")
        self._enter()
        try:
            with self._lock:
                self.calls.append(("create", str(name)))
                self._raise_scripted("create", name)

                for existing in self.resources.values():
                    if name is not None and existing.get("name") == name:
                        raise PermanentProviderError(
                            f"The resource '{self._self_link(name, attributes)}' already exists",
                            code='alreadyExists',
                            context=ErrorContext(resource_type=self.resource_type, operation="create")
                        )

                provider_id = str(1000000000 + next(self._ids))
                self.resources[provider_id] = dict(attributes)
                outputs = self._outputs(provider_id, attributes)
        finally:
            self._exit()

        logger.debug(f"Created {self.resource_type} {name} ({provider_id})")
        return CreateResult(provider_id=provider_id, outputs=outputs)

    def update(self, provider_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        name = attributes.get("name")
        self._enter()
        try:
            with self._lock:
                self.calls.append(("update", str(name)))
                self._raise_scripted("update", name)

                current = self._get(provider_id, "update")
                changed = sorted(
                    key for key in self.immutable_attributes
                    if current.get(key) != attributes.get(key)
                )
                if changed:
                    raise PermanentProviderError(
                        f"Cannot update immutable fields of {self.resource_type} {provider_id}: "
                        f"{', '.join(changed)}",
                        code='invalid',
                        context=ErrorContext(
                            resource_type=self.resource_type,
                            operation="update",
                            provider_id=provider_id
                        )
                    )

                self.resources[provider_id] = dict(attributes)
                outputs = self._outputs(provider_id, attributes)
        finally:
            self._exit()

        logger.debug(f"Updated {self.resource_type} {provider_id}")
        return outputs

    def delete(self, provider_id: str) -> None:
        self._enter()
        try:
            with self._lock:
                self.calls.append(("delete", provider_id))
                self._raise_scripted("delete", provider_id)
                self._get(provider_id, "delete")
                del self.resources[provider_id]
        finally:
            self._exit()

        logger.debug(f"Deleted {self.resource_type} {provider_id}")

    def _get(self, provider_id: str, operation: str) -> Dict[str, Any]:
        current = self.resources.get(provider_id)
        if current is None:
            raise PermanentProviderError(
                f"The {self.resource_type} '{provider_id}' was not found",
                code='notFound',
                context=ErrorContext(
                    resource_type=self.resource_type,
                    operation=operation,
                    provider_id=provider_id
                )
            )
        return current

    def _raise_scripted(self, operation: str, key: Optional[str]) -> None:
        for failure in self._failures:
            if failure.operation != operation or failure.remaining <= 0:
                continue
            if failure.name is not None and failure.name != key:
                continue
            failure.remaining -= 1
            raise failure.error

    def _enter(self) -> None:
        with self._lock:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        if self.latency:
            time.sleep(self.latency)

    def _exit(self) -> None:
        with self._lock:
            self.in_flight -= 1

    def _self_link(self, name: Optional[str], attributes: Dict[str, Any]) -> str:
        if self.type_info.regional:
            scope = f"regions/{attributes.get('region', self.settings.region)}"
        else:
            scope = "global"
        return (
            "https://www.googleapis.com/compute/v1/"
            f"projects/{self.settings.project}/{scope}/{self.type_info.collection}/{name}"
        )

    def _outputs(self, provider_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        outputs: Dict[str, Any] = {}
        for output in self.type_info.outputs:
            if output == "self_link":
                outputs[output] = self._self_link(attributes.get("name", provider_id), attributes)
            elif output in ("address", "ip_address"):
                outputs[output] = attributes.get(output) or f"203.0.113.{int(provider_id) % 254 + 1}"
            elif output in ("gateway_address", "gateway_ipv4"):
                outputs[output] = self._gateway(attributes.get("ip_cidr_range"))
            else:
                outputs[output] = provider_id
        return outputs

    @staticmethod
    def _gateway(cidr: Optional[str]) -> str:
        if not cidr:
            return "10.128.0.1"
        return str(next(ipaddress.ip_network(cidr, strict=False).hosts()))


def build_simulated_registry(settings: ProviderSettings, latency: float = 0.0) -> ProviderRegistry:
    """Registry with one InMemoryProvider per catalog type."""
    return ProviderRegistry(
        InMemoryProvider(resource_type, settings, latency=latency)
        for resource_type in RESOURCE_TYPES.values()
    )
