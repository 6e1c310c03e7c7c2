"""Cluster network discovery: try each known plugin, then fall back to generic discovery."""

from __future__ import annotations

from typing import Callable, Optional

from clusternet.cluster_network import ClusterNetwork
from clusternet.generic import discover_generic_network
from clusternet.kube import ApiError, MemoryClient
from clusternet.plugins import (
    discover_calico_network,
    discover_canal_flannel_network,
    discover_flannel_network,
    discover_kind_network,
    discover_openshift4_network,
    discover_ovn_kubernetes_network,
    discover_weave_network,
)

SUBMARINER_KIND = "Submariner"
SUBMARINER_CR_NAME = "submariner"

_PluginDiscovery = Callable[[MemoryClient], Optional[ClusterNetwork]]

_DISCOVER_FUNCTIONS: tuple[_PluginDiscovery, ...] = (
    discover_openshift4_network,
    discover_ovn_kubernetes_network,
    discover_weave_network,
    discover_canal_flannel_network,
    discover_calico_network,
    discover_flannel_network,
    discover_kind_network,
)


def network_plugins_discovery(client: MemoryClient) -> ClusterNetwork | None:
    """Return the result of the first plugin-specific discovery that recognises the cluster."""
    for discover_plugin in _DISCOVER_FUNCTIONS:
        cluster_network = discover_plugin(client)
        if cluster_network is not None:
            return cluster_network
    return None


def _get_global_cidr(client: MemoryClient | None, operator_namespace: str) -> str:
    """Return the global CIDR of the Submariner resource, or an empty string if unavailable."""
    if client is None:
        return ""
    try:
        resource = client.get(SUBMARINER_KIND, operator_namespace, SUBMARINER_CR_NAME)
    except ApiError:
        return ""
    return (resource.get("spec") or {}).get("globalCIDR") or ""


def discover(client: MemoryClient, operator_namespace: str = "") -> ClusterNetwork | None:
    """Discover the cluster's network plugin, pod CIDRs, service CIDRs and global CIDR."""
    discovered = network_plugins_discovery(client)
    if discovered is None:
        return discover_generic_network(client)

    discovered.global_cidr = _get_global_cidr(client, operator_namespace)
    if discovered.is_complete():
        return discovered

    # Fill in whatever the plugin-specific discovery could not find.
    generic = discover_generic_network(client)
    if generic is not None:
        if not discovered.service_cidrs:
            discovered.service_cidrs = generic.service_cidrs
        if not discovered.pod_cidrs:
            discovered.pod_cidrs = generic.pod_cidrs
    return discovered