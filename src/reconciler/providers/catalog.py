"""Resource types of the network and load-balancing stack."""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Tuple


@dataclass(frozen=True)
class ResourceType:
    """Static description of a resource type."""

    name: str
    collection: str
    regional: bool
    immutable_attributes: FrozenSet[str]
    outputs: Tuple[str, ...] = ("self_link",)


RESOURCE_TYPES: Dict[str, ResourceType] = {
    resource_type.name: resource_type
    for resource_type in (
        ResourceType(
            name="network",
            collection="networks",
            regional=False,
            immutable_attributes=frozenset({"name", "auto_create_subnetworks", "description", "mtu"}),
            outputs=("self_link", "gateway_ipv4"),
        ),
        ResourceType(
            name="subnetwork",
            collection="subnetworks",
            regional=True,
            immutable_attributes=frozenset({"name", "network", "region"}),
            outputs=("self_link", "gateway_address"),
        ),
        ResourceType(
            name="firewall",
            collection="firewalls",
            regional=False,
            immutable_attributes=frozenset({"name", "network", "direction"}),
        ),
        ResourceType(
            name="health_check",
            collection="healthChecks",
            regional=False,
            immutable_attributes=frozenset({"name"}),
        ),
        ResourceType(
            name="backend_service",
            collection="backendServices",
            regional=False,
            immutable_attributes=frozenset({"name", "load_balancing_scheme"}),
        ),
        ResourceType(
            name="url_map",
            collection="urlMaps",
            regional=False,
            immutable_attributes=frozenset({"name"}),
        ),
        ResourceType(
            name="ssl_certificate",
            collection="sslCertificates",
            regional=False,
            immutable_attributes=frozenset({"name", "certificate", "private_key", "description"}),
            outputs=("self_link", "certificate_id"),
        ),
        ResourceType(
            name="target_https_proxy",
            collection="targetHttpsProxies",
            regional=False,
            immutable_attributes=frozenset({"name"}),
        ),
        ResourceType(
            name="global_forwarding_rule",
            collection="forwardingRules",
            regional=False,
            immutable_attributes=frozenset(
                {"name", "ip_address", "ip_protocol", "port_range", "load_balancing_scheme"}
            ),
            outputs=("self_link", "ip_address"),
        ),
        ResourceType(
            name="global_address",
            collection="addresses",
            regional=False,
            immutable_attributes=frozenset({"name", "address", "address_type", "ip_version"}),
            outputs=("self_link", "address"),
        ),
    )
}


def get_resource_type(name: str) -> ResourceType:
    """Look up a catalog entry.

    Raises:
        KeyError: If the type is not in the catalog
    """
    try:
        return RESOURCE_TYPES[name]
    except KeyError:
        raise KeyError(f"Unknown resource type: {name}") from None
