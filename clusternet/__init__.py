"""Kubernetes cluster network discovery and Globalnet CIDR allocation over an object client."""

__version__ = "0.1.0"

__all__ = [
    "cidr",
    "cluster_network",
    "discovery",
    "generic",
    "globalnet",
    "kube",
    "plugins",
    "pods",
    "reporter",
]