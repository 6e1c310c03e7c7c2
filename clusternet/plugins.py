"""Discovery of clusters that run a specific, recognisable network plugin."""

from __future__ import annotations

import json
from typing import Any

from clusternet.cluster_network import ClusterNetwork, NetworkPlugin
from clusternet.generic import discover_network, find_cluster_ip_range, find_pod_ip_range
from clusternet.kube import ApiError, MemoryClient, NotFoundError
from clusternet.pods import find_pod

_KUBE_SYSTEM = "kube-system"
_NET_CONF_KEY = "net-conf.json"


def _name_of(obj: dict[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("name") or ""


def _containers(pod: dict[str, Any]) -> list[dict[str, Any]]:
    return (pod.get("spec") or {}).get("containers") or []


def _env_value_from_containers(pod: dict[str, Any], variable: str) -> str | None:
    """Return the variable's value from the last container that sets it."""
    value = None
    for container in _containers(pod):
        for env_var in container.get("env") or []:
            if env_var.get("name") == variable:
                value = env_var.get("value") or ""
                break
    return value


def _with_service_cidrs(cluster_network: ClusterNetwork, client: MemoryClient) -> ClusterNetwork:
    cluster_ip_range = find_cluster_ip_range(client)
    if cluster_ip_range:
        cluster_network.service_cidrs = [cluster_ip_range]
    return cluster_network


def _with_service_cidrs_if_found(cluster_network: ClusterNetwork, client: MemoryClient) -> ClusterNetwork:
    try:
        return _with_service_cidrs(cluster_network, client)
    except (ValueError, ApiError):
        return cluster_network


def _named_object_exists(client: MemoryClient, kind: str, name: str) -> bool:
    return any(_name_of(obj) == name for obj in client.list(kind))


def discover_calico_network(client: MemoryClient) -> ClusterNetwork | None:
    """Detect Calico by its ConfigMap or DaemonSet and discover the CIDRs generically."""
    found = _named_object_exists(client, "ConfigMap", "calico-config") or _named_object_exists(
        client, "DaemonSet", "calico-node"
    )
    if not found:
        return None

    cluster_network = discover_network(client)
    if cluster_network is None:
        return None
    cluster_network.network_plugin = NetworkPlugin.CALICO
    return cluster_network


def extract_pod_cidr_from_net_config_json(config_map: dict[str, Any]) -> str | None:
    """Return the ``Network`` field of the ConfigMap's net-conf.json, or None if unreadable."""
    text = (config_map.get("data") or {}).get(_NET_CONF_KEY) or ""
    if not text:
        return None
    try:
        net_conf = json.loads(text)
    except json.JSONDecodeError:
        return None
    if net_conf is None:
        return ""
    if not isinstance(net_conf, dict):
        return None

    if "Network" in net_conf:
        value = net_conf["Network"]
    else:
        value = next((v for k, v in net_conf.items() if k.lower() == "network"), "")
    if value is None:
        return ""
    if not isinstance(value, str):
        return None
    return value


def discover_canal_flannel_network(client: MemoryClient) -> ClusterNetwork | None:
    """Detect Canal by its ``canal-config`` ConfigMap in kube-system."""
    try:
        config_map = client.get("ConfigMap", _KUBE_SYSTEM, "canal-config")
    except NotFoundError:
        return None
    except ApiError as exc:
        raise ApiError(f'error obtaining the "canal-config" ConfigMap: {exc}') from exc

    pod_cidr = extract_pod_cidr_from_net_config_json(config_map)
    if pod_cidr is None:
        return None

    cluster_network = ClusterNetwork(network_plugin=NetworkPlugin.CANAL_FLANNEL, pod_cidrs=[pod_cidr])
    return _with_service_cidrs(cluster_network, client)


def discover_flannel_network(client: MemoryClient) -> ClusterNetwork | None:
    """Detect Flannel by its DaemonSet in kube-system and read its ConfigMap."""
    volumes: list[dict[str, Any]] = []
    for daemon_set in client.list("DaemonSet", _KUBE_SYSTEM):
        if "flannel" in _name_of(daemon_set):
            template_spec = ((daemon_set.get("spec") or {}).get("template") or {}).get("spec") or {}
            volumes = template_spec.get("volumes") or []

    if not volumes:
        return None

    flannel_config_map = ""
    for volume in volumes:
        if "flannel" in (volume.get("name") or ""):
            config_map_name = (volume.get("configMap") or {}).get("name") or ""
            if config_map_name:
                flannel_config_map = config_map_name

    if not flannel_config_map:
        pod_cidr: str | None = find_pod_ip_range(client)
    else:
        try:
            config_map = client.get("ConfigMap", _KUBE_SYSTEM, flannel_config_map)
        except NotFoundError:
            return None
        except ApiError as exc:
            raise ApiError(f'error retrieving the flannel ConfigMap "{flannel_config_map}": {exc}') from exc

        pod_cidr = extract_pod_cidr_from_net_config_json(config_map)
        if pod_cidr is None:
            return None

    cluster_network = ClusterNetwork(network_plugin=NetworkPlugin.FLANNEL, pod_cidrs=[pod_cidr])
    return _with_service_cidrs(cluster_network, client)


def discover_kind_network(client: MemoryClient) -> ClusterNetwork | None:
    """Detect kindnet by its pods and read the pod subnet from their environment."""
    pod = find_pod(client, "app=kindnet")
    if pod is None:
        return None

    cluster_network = ClusterNetwork(network_plugin=NetworkPlugin.KIND_NET)
    pod_subnet = _env_value_from_containers(pod, "POD_SUBNET")
    if pod_subnet is not None:
        cluster_network.pod_cidrs = [pod_subnet]
    return _with_service_cidrs_if_found(cluster_network, client)


def discover_weave_network(client: MemoryClient) -> ClusterNetwork | None:
    """Detect Weave Net by its pods and read the allocation range from their environment."""
    pod = find_pod(client, "name=weave-net")
    if pod is None:
        return None

    cluster_network = ClusterNetwork(network_plugin=NetworkPlugin.WEAVE_NET)
    alloc_range = _env_value_from_containers(pod, "IPALLOC_RANGE")
    if alloc_range is not None:
        cluster_network.pod_cidrs = [alloc_range]
    return _with_service_cidrs_if_found(cluster_network, client)


def discover_ovn_kubernetes_network(client: MemoryClient) -> ClusterNetwork | None:
    """Detect OVN-Kubernetes by its node pods and read CIDRs from ``ovn-config`` if present."""
    pod = find_pod(client, "app=ovnkube-node")
    if pod is None:
        return None

    cluster_network = ClusterNetwork(network_plugin=NetworkPlugin.OVN_KUBERNETES)
    namespace = (pod.get("metadata") or {}).get("namespace") or ""
    try:
        ovn_config = client.get("ConfigMap", namespace, "ovn-config")
    except ApiError:
        return cluster_network

    data = ovn_config.get("data") or {}
    if "net_cidr" in data:
        cluster_network.pod_cidrs = [data["net_cidr"]]
    if "svc_cidr" in data:
        cluster_network.service_cidrs = [data["svc_cidr"]]
    return cluster_network


def discover_openshift4_network(client: MemoryClient) -> ClusterNetwork | None:
    """Read the OpenShift 4 ``cluster`` Network config resource, if there is one."""
    try:
        resource = client.get("Network", "", "cluster")
    except NotFoundError:
        return None
    except ApiError as exc:
        raise ApiError(
            f"error obtaining the default 'cluster' OpenShift4 Network config resource: {exc}"
        ) from exc
    return parse_os4_network(resource)


def _nested(obj: Any, *fields: str) -> tuple[Any, bool]:
    current = obj
    for index, name in enumerate(fields):
        if not isinstance(current, dict):
            path = ".".join(fields[:index])
            raise ValueError(f"{path} accessor error: {current!r} is of the type {type(current).__name__}, expected map")
        if name not in current:
            return None, False
        current = current[name]
    return current, True


def _nested_typed(obj: Any, expected: type, *fields: str) -> tuple[Any, bool]:
    value, found = _nested(obj, *fields)
    if found and not isinstance(value, expected):
        path = ".".join(fields)
        raise ValueError(f"{path} accessor error: {value!r} is of the type {type(value).__name__}, expected {expected.__name__}")
    return value, found


def _plugin_name(network_type: str) -> str:
    if network_type == "Calico":
        return NetworkPlugin.CALICO
    try:
        return NetworkPlugin(network_type)
    except ValueError:
        return network_type


def parse_os4_network(resource: dict[str, Any]) -> ClusterNetwork:
    """Build a ClusterNetwork from an OpenShift 4 Network config resource."""
    result = ClusterNetwork()

    try:
        cluster_networks, found = _nested_typed(resource, list, "spec", "clusterNetwork")
    except ValueError as exc:
        raise ValueError(f"error retrieving spec.clusterNetwork field: {exc}") from exc
    if not found:
        raise ValueError(f"field .spec.clusterNetwork expected, but not found in Network resource: {resource}")

    for cluster_network in cluster_networks:
        cluster_network_map = cluster_network if isinstance(cluster_network, dict) else {}
        try:
            cidr, found = _nested_typed(cluster_network_map, str, "cidr")
        except ValueError as exc:
            raise ValueError(f"error retrieving cidr field: {exc}") from exc
        if not found:
            raise ValueError(f"field cidr expected, but not found in clusterNetwork: {cluster_network_map}")
        result.pod_cidrs.append(cidr)

    try:
        service_networks, found = _nested_typed(resource, list, "spec", "serviceNetwork")
    except ValueError as exc:
        raise ValueError(f"error retrieving spec.serviceNetwork field: {exc}") from exc
    if not found:
        raise ValueError(f"field .spec.serviceNetwork expected, but not found in Network resource: {resource}")

    for service_network in service_networks:
        if not isinstance(service_network, str):
            raise ValueError(f"serviceNetwork entry {service_network!r} is not a string")
        result.service_cidrs.append(service_network)

    try:
        network_type, found = _nested_typed(resource, str, "spec", "networkType")
    except ValueError as exc:
        raise ValueError(f"error retrieving spec.networkType field: {exc}") from exc
    if not found:
        raise ValueError(f"field .spec.networkType expected, but not found in Network resource: {resource}")

    result.network_plugin = _plugin_name(network_type)
    return result