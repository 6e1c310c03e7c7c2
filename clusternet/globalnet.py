"""Globalnet settings kept in a broker ConfigMap, and global CIDR assignment."""

from __future__ import annotations

import json
import time
from typing import Any

from clusternet.cidr import (
    Config,
    GlobalNetwork,
    Info,
    allocate_global_cidr,
    check_overlapping_cidrs,
    get_valid_cluster_size,
    is_cidr_preconfigured,
    is_valid_cidr,
)
from clusternet.kube import AlreadyExistsError, ConflictError, MemoryClient, NotFoundError
from clusternet.reporter import Reporter

GLOBAL_CIDR_CONFIG_MAP_NAME = "submariner-globalnet-info"
GLOBALNET_ENABLED_KEY = "globalnetEnabled"
CLUSTER_INFO_KEY = "clusterinfo"
GLOBALNET_CIDR_RANGE_KEY = "globalnetCidrRange"
GLOBALNET_CLUSTER_SIZE_KEY = "globalnetClusterSize"
DEFAULT_GLOBALNET_CIDR = "242.0.0.0/8"
DEFAULT_GLOBALNET_CLUSTER_SIZE = 65536  # a /16 per cluster

_CONFIG_MAP_KIND = "ConfigMap"
_RETRY_STEPS = 5
_RETRY_DELAY = 0.01


def new_globalnet_config_map(
    globalnet_enabled: bool,
    default_global_cidr_range: str,
    default_global_cluster_size: int,
    namespace: str,
) -> dict[str, Any]:
    """Build the ConfigMap that records the broker's globalnet settings."""
    if globalnet_enabled:
        data = {
            GLOBALNET_ENABLED_KEY: "true",
            GLOBALNET_CIDR_RANGE_KEY: json.dumps(default_global_cidr_range, ensure_ascii=False),
            GLOBALNET_CLUSTER_SIZE_KEY: str(default_global_cluster_size),
            CLUSTER_INFO_KEY: "[]",
        }
    else:
        data = {
            GLOBALNET_ENABLED_KEY: "false",
            CLUSTER_INFO_KEY: "[]",
        }

    return {
        "kind": _CONFIG_MAP_KIND,
        "metadata": {
            "name": GLOBAL_CIDR_CONFIG_MAP_NAME,
            "namespace": namespace,
            "labels": {"component": "submariner-globalnet"},
        },
        "data": data,
    }


def create_config_map(
    client: MemoryClient,
    globalnet_enabled: bool,
    default_global_cidr_range: str,
    default_global_cluster_size: int,
    namespace: str,
) -> None:
    """Create the globalnet ConfigMap unless it already exists."""
    config_map = new_globalnet_config_map(
        globalnet_enabled, default_global_cidr_range, default_global_cluster_size, namespace
    )
    try:
        client.create(config_map)
    except AlreadyExistsError:
        pass


def get_config_map(client: MemoryClient, namespace: str) -> dict[str, Any]:
    """Return the globalnet ConfigMap of a namespace."""
    return client.get(_CONFIG_MAP_KIND, namespace, GLOBAL_CIDR_CONFIG_MAP_NAME)


def delete_config_map(client: MemoryClient, namespace: str) -> None:
    """Delete the globalnet ConfigMap of a namespace."""
    client.delete(_CONFIG_MAP_KIND, namespace, GLOBAL_CIDR_CONFIG_MAP_NAME)


def _parse_cluster_info(text: str) -> list[dict[str, Any]]:
    """Decode the JSON list of cluster records kept under the clusterinfo key."""
    decoded = json.loads(text)
    if decoded is None:
        return []
    if not isinstance(decoded, list):
        raise ValueError("cluster info is not a JSON array")

    records = []
    for item in decoded:
        if item is None:
            item = {}
        if not isinstance(item, dict):
            raise ValueError("cluster info entry is not a JSON object")
        cluster_id = item.get("cluster_id") or ""
        cidrs = item.get("global_cidr")
        if not isinstance(cluster_id, str):
            raise ValueError("cluster_id is not a string")
        if cidrs is not None and (
            not isinstance(cidrs, list) or not all(isinstance(cidr, str) for cidr in cidrs)
        ):
            raise ValueError("global_cidr is not a list of strings")
        records.append({"cluster_id": cluster_id, "global_cidr": cidrs})
    return records


def update_config_map(
    client: MemoryClient,
    config_map: dict[str, Any],
    cluster_id: str,
    global_cidrs: list[str],
) -> dict[str, Any]:
    """Record a cluster's global CIDRs in the ConfigMap and store it."""
    data = config_map.setdefault("data", {})
    try:
        records = _parse_cluster_info(data.get(CLUSTER_INFO_KEY, ""))
    except ValueError as exc:
        raise ValueError(f"error unmarshalling ClusterInfo: {exc}") from exc

    matching = [record for record in records if record["cluster_id"] == cluster_id]
    for record in matching:
        record["global_cidr"] = list(global_cidrs)
    if not matching:
        records.append({"cluster_id": cluster_id, "global_cidr": list(global_cidrs)})

    data[CLUSTER_INFO_KEY] = json.dumps(records, indent="\t", ensure_ascii=False)
    return client.update(config_map)


def validate_globalnet_configuration(globalnet_info: Info, netconfig: Config, status: Reporter) -> str:
    """Check the requested settings against the broker's and return the global CIDR to use."""
    status.start("Validating Globalnet configuration")
    try:
        cluster_size = netconfig.cluster_size
        global_cidr = netconfig.global_cidr

        if globalnet_info.enabled and cluster_size != 0 and cluster_size != globalnet_info.cluster_size:
            try:
                globalnet_info.cluster_size = get_valid_cluster_size(globalnet_info.cidr_range, cluster_size)
            except ValueError as exc:
                raise status.error(exc, "invalid cluster size") from exc

        if global_cidr and cluster_size != 0:
            status.failure("Only one of cluster size and global CIDR can be specified")
            raise ValueError("only one of cluster size and global CIDR can be specified")

        if global_cidr:
            try:
                is_valid_cidr(global_cidr)
            except ValueError as exc:
                raise ValueError(f"specified globalnet-cidr is invalid: {exc}") from exc

        if not globalnet_info.enabled:
            if global_cidr:
                status.warning("Globalnet is not enabled on the Broker - ignoring the specified global CIDR")
                global_cidr = ""
            elif cluster_size != 0:
                status.warning("Globalnet is not enabled on the Broker - ignoring the specified cluster size")
                globalnet_info.cluster_size = 0

        return global_cidr
    finally:
        status.end()


def assign_globalnet_ips(globalnet_info: Info, netconfig: Config, status: Reporter) -> str:
    """Pick the cluster's global CIDR: pre-configured, requested or newly allocated."""
    status.start("Assigning Globalnet IPs")
    try:
        global_cidr = netconfig.global_cidr
        cluster_id = netconfig.cluster_id
        preconfigured = is_cidr_preconfigured(cluster_id, globalnet_info.cidr_info)

        if not global_cidr:
            if preconfigured:
                global_cidr = globalnet_info.cidr_info[cluster_id].global_cidrs[0]
                status.success("Using pre-configured global CIDR %s", global_cidr)
            else:
                try:
                    global_cidr = allocate_global_cidr(globalnet_info)
                except ValueError as exc:
                    raise status.error(exc, "unable to allocate global CIDR") from exc
                status.success("Allocated global CIDR %s", global_cidr)
        elif preconfigured:
            global_cidr = globalnet_info.cidr_info[cluster_id].global_cidrs[0]
            status.warning(
                "A pre-configured global CIDR %s was detected - not using the specified CIDR %s",
                global_cidr,
                netconfig.global_cidr,
            )
        else:
            try:
                check_overlapping_cidrs(globalnet_info, netconfig)
            except ValueError as exc:
                raise status.error(exc, "error validating overlapping global CIDRs %s", global_cidr) from exc
            status.success("Using specified global CIDR %s", global_cidr)

        return global_cidr
    finally:
        status.end()


def _decode(data: dict[str, str], key: str, what: str) -> Any:
    try:
        return json.loads(data.get(key, ""))
    except json.JSONDecodeError as exc:
        raise ValueError(f"error reading {what}: {exc}") from exc


def get_global_networks(client: MemoryClient, broker_namespace: str) -> tuple[Info, dict[str, Any]]:
    """Read the broker's globalnet settings and the global CIDRs of known clusters."""
    config_map = get_config_map(client, broker_namespace)
    data = config_map.get("data") or {}
    info = Info()

    enabled = _decode(data, GLOBALNET_ENABLED_KEY, "globalnetEnabled status")
    if enabled is not None and not isinstance(enabled, bool):
        raise ValueError(f"error reading globalnetEnabled status: {enabled!r} is not a boolean")
    info.enabled = bool(enabled)

    if info.enabled:
        size = _decode(data, GLOBALNET_CLUSTER_SIZE_KEY, "GlobalnetClusterSize")
        if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 0):
            raise ValueError(f"error reading GlobalnetClusterSize: {size!r} is not an unsigned integer")
        info.cluster_size = size or 0

        cidr_range = _decode(data, GLOBALNET_CIDR_RANGE_KEY, "GlobalnetCidrRange")
        if cidr_range is not None and not isinstance(cidr_range, str):
            raise ValueError(f"error reading GlobalnetCidrRange: {cidr_range!r} is not a string")
        info.cidr_range = cidr_range or ""

    try:
        records = _parse_cluster_info(data.get(CLUSTER_INFO_KEY, ""))
    except ValueError as exc:
        raise ValueError(f"error reading globalnet clusterInfo: {exc}") from exc

    info.cidr_info = {
        record["cluster_id"]: GlobalNetwork(
            global_cidrs=list(record["global_cidr"] or []), cluster_id=record["cluster_id"]
        )
        for record in records
    }
    return info, config_map


def validate_existing_global_networks(client: MemoryClient, namespace: str) -> None:
    """Raise if an existing globalnet ConfigMap holds an invalid CIDR range."""
    try:
        info, _ = get_global_networks(client, namespace)
    except NotFoundError:
        return

    if info.enabled:
        try:
            is_valid_cidr(info.cidr_range)
        except ValueError as exc:
            raise ValueError(f"invalid GlobalnetCidrRange: {exc}") from exc


def _allocate_and_update_once(
    client: MemoryClient, broker_namespace: str, netconfig: Config, status: Reporter
) -> None:
    status.start("Retrieving Globalnet information from the Broker")
    try:
        try:
            info, config_map = get_global_networks(client, broker_namespace)
        except Exception as exc:
            raise status.error(exc, "unable to retrieve Globalnet information") from exc

        try:
            netconfig.global_cidr = validate_globalnet_configuration(info, netconfig, status)
        except Exception as exc:
            raise status.error(exc, "error validating the Globalnet configuration") from exc

        if not info.enabled:
            return

        try:
            netconfig.global_cidr = assign_globalnet_ips(info, netconfig, status)
        except Exception as exc:
            raise status.error(exc, "error assigning Globalnet IPs") from exc

        existing = info.cidr_info.get(netconfig.cluster_id)
        if existing is not None and existing.global_cidrs and existing.global_cidrs[0] == netconfig.global_cidr:
            return

        status.start("Updating the Globalnet information on the Broker")
        try:
            update_config_map(client, config_map, netconfig.cluster_id, [netconfig.global_cidr])
        except ConflictError:
            status.warning("Conflict occurred updating the Globalnet ConfigMap - retrying")
            raise
        except Exception as exc:
            raise status.error(exc, "error updating the Globalnet ConfigMap") from exc
    finally:
        status.end()


def allocate_and_update_global_cidr_config_map(
    client: MemoryClient, broker_namespace: str, netconfig: Config, status: Reporter
) -> None:
    """Assign the cluster a global CIDR and record it on the broker, retrying on conflicts."""
    for attempt in range(_RETRY_STEPS):
        try:
            _allocate_and_update_once(client, broker_namespace, netconfig, status)
            return
        except ConflictError:
            if attempt == _RETRY_STEPS - 1:
                raise
            time.sleep(_RETRY_DELAY)