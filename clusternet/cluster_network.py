"""The discovered network details of a cluster."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum


class NetworkPlugin(str, Enum):
    """Names of the network plugins that discovery recognises."""

    GENERIC = "generic"
    CANAL_FLANNEL = "canal-flannel"
    WEAVE_NET = "weave-net"
    OPENSHIFT_SDN = "OpenShiftSDN"
    OVN_KUBERNETES = "OVNKubernetes"
    CALICO = "calico"
    KIND_NET = "kindnet"
    FLANNEL = "flannel"

    def __str__(self) -> str:
        return self.value

    def __format__(self, spec: str) -> str:
        return format(self.value, spec)


def _format_list(items: list[str]) -> str:
    return "[" + " ".join(items) + "]"


@dataclass
class ClusterNetwork:
    """Pod and service CIDRs, network plugin and global CIDR of a cluster."""

    pod_cidrs: list[str] = field(default_factory=list)
    service_cidrs: list[str] = field(default_factory=list)
    network_plugin: str = ""
    global_cidr: str = ""
    plugin_settings: dict[str, str] = field(default_factory=dict)

    def show(self) -> None:
        """Print the network details."""
        print(f"        Network plugin:  {self.network_plugin}")
        print(f"        Service CIDRs:   {_format_list(self.service_cidrs)}")
        print(f"        Cluster CIDRs:   {_format_list(self.pod_cidrs)}")
        if self.global_cidr:
            print(f"        Global CIDR:     {self.global_cidr}")

    def log(self, logger: logging.Logger) -> None:
        """Log the network details at info level."""
        logger.info(
            "Discovered K8s network details plugin=%s clusterCIDRs=%s serviceCIDRs=%s",
            self.network_plugin,
            _format_list(self.pod_cidrs),
            _format_list(self.service_cidrs),
        )

    def is_complete(self) -> bool:
        """Return True when both service and pod CIDRs are known."""
        return bool(self.service_cidrs) and bool(self.pod_cidrs)