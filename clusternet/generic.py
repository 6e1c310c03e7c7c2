"""Network discovery that works on any cluster, from control-plane pods, nodes and services."""

from __future__ import annotations

import os
import re
from typing import Any

from clusternet.cluster_network import ClusterNetwork, NetworkPlugin
from clusternet.kube import MemoryClient
from clusternet.pods import find_pod_command_parameter

_SERVICE_RANGE = re.compile(r".*valid IPs is (.*)\Z")


def discover_generic_network(client: MemoryClient) -> ClusterNetwork | None:
    """Discover the network and mark it as using the generic plugin."""
    cluster_network = discover_network(client)
    if cluster_network is not None:
        cluster_network.network_plugin = NetworkPlugin.GENERIC
    return cluster_network


def discover_network(client: MemoryClient) -> ClusterNetwork | None:
    """Find pod and service CIDRs; return None when neither is found."""
    cluster_network = ClusterNetwork()

    pod_ip_range = find_pod_ip_range(client)
    if pod_ip_range:
        cluster_network.pod_cidrs = [pod_ip_range]

    cluster_ip_range = find_cluster_ip_range(client)
    if cluster_ip_range:
        cluster_network.service_cidrs = [cluster_ip_range]

    if cluster_network.pod_cidrs or cluster_network.service_cidrs:
        return cluster_network
    return None


def find_cluster_ip_range(client: MemoryClient) -> str:
    """Find the service CIDR from the API server's command or by a probing service creation."""
    cluster_ip_range = find_pod_command_parameter(
        client, "component=kube-apiserver", "--service-cluster-ip-range"
    )
    if cluster_ip_range:
        return cluster_ip_range
    return _find_cluster_ip_range_from_service_creation(client)


def _invalid_service(namespace: str) -> dict[str, Any]:
    return {
        "kind": "Service",
        "metadata": {"name": "invalid-svc", "namespace": namespace},
        "spec": {
            "clusterIP": "1.1.1.1",
            "ports": [{"port": 443, "targetPort": 443}],
        },
    }


def _find_cluster_ip_range_from_service_creation(client: MemoryClient) -> str:
    # Inside the operator WATCH_NAMESPACE names its namespace; elsewhere use "default".
    namespace = os.environ.get("WATCH_NAMESPACE") or "default"
    try:
        client.create(_invalid_service(namespace))
    except Exception as exc:
        return parse_service_cidr_from(str(exc))
    raise ValueError(
        "could not determine the service IP range via service creation - "
        "expected a specific error but none was returned"
    )


def parse_service_cidr_from(msg: str) -> str:
    """Extract the valid service range from the error of a rejected service creation."""
    match = _SERVICE_RANGE.search(msg)
    if match is None:
        raise ValueError(
            "could not determine the service IP range via service creation - the expected error "
            f'was not returned. The actual error was "{msg}"'
        )
    return match[1]


def find_pod_ip_range(client: MemoryClient) -> str:
    """Find the pod CIDR from controller-manager, kube-proxy or a single node's spec."""
    for label_selector in ("component=kube-controller-manager", "component=kube-proxy"):
        pod_ip_range = find_pod_command_parameter(client, label_selector, "--cluster-cidr")
        if pod_ip_range:
            return pod_ip_range
    return parse_to_pod_cidr(client.list("Node"))


def parse_to_pod_cidr(nodes: list[dict[str, Any]]) -> str:
    """Return the node's pod CIDR for a single-node cluster, else an empty string.

    Each node normally gets its own slice of the pod range, so only a single node's
    pod CIDR stands for the whole cluster.
    """
    if len(nodes) == 1:
        return (nodes[0].get("spec") or {}).get("podCIDR") or ""
    return ""