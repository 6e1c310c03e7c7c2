# clusternet

Tools for working out the network layout of a Kubernetes cluster and for
handing out non-overlapping Globalnet CIDRs to clusters that share a broker.

## What it does

- **Network discovery** (`clusternet.discovery.discover`) inspects the objects
  held by a client and reports the network plugin in use together with the
  pod and service CIDRs, as a `clusternet.cluster_network.ClusterNetwork`.
  Plugin-specific detection (`clusternet.plugins`) covers OpenShift 4,
  OVN-Kubernetes, Weave Net, Canal, Calico, Flannel and kindnet, tried in
  that order. Generic detection (`clusternet.generic`) reads the
  kube-apiserver, kube-controller-manager and kube-proxy command flags, the
  pod CIDR of a single-node cluster, and the error returned when creating a
  deliberately invalid service. When a plugin is recognised but its details
  are incomplete, the missing CIDRs are filled in by generic detection.
  The global CIDR is read from the `spec.globalCIDR` of a `Submariner`
  object named `submariner` in the operator namespace, if there is one.
- **Globalnet allocation** (`clusternet.globalnet`) keeps the broker's
  `submariner-globalnet-info` ConfigMap, validates requested CIDRs and cluster
  sizes, allocates the next free block of the global range and records it,
  retrying on update conflicts.
- **CIDR helpers** (`clusternet.cidr`): `is_overlapping_cidr`,
  `check_overlapping_cidrs`, `is_valid_cidr` (rejects unspecified, loopback,
  link-local and link-local multicast ranges), `get_valid_cluster_size`,
  `next_power_of_2` and `allocate_global_cidr`.
- **Pod lookup** (`clusternet.pods`): `find_pod` and
  `find_pod_command_parameter`, which also searches arguments of the form
  `sh -c "exec ..."`.
- **Progress reporting** (`clusternet.reporter`): `Reporter` writes steps to a
  `logging` logger; `RecordingReporter` keeps them in lists.

Objects are plain dictionaries shaped like Kubernetes resources
(`kind`, `metadata.name`, `metadata.namespace`, `metadata.labels`, `spec`,
`data`). `clusternet.kube.MemoryClient` is an in-memory store of such objects
with `get`, `list` (with label selectors such as `app=web,tier!=db`,
`env in (a,b)` or `!legacy`), `create`, `update` and `delete`; the functions
only call those methods, so another object offering them the same way can
stand in for it.

## Installation

```
pip install clusternet
```

## Example: discovering a cluster's network

```python
from clusternet.discovery import discover
from clusternet.kube import MemoryClient

objects = [
    {
        "kind": "Pod",
        "metadata": {
            "name": "kube-apiserver",
            "namespace": "kube-system",
            "labels": {"component": "kube-apiserver"},
        },
        "spec": {"containers": [
            {"command": ["kube-apiserver", "--service-cluster-ip-range=10.96.0.0/12"]}
        ]},
    },
    {
        "kind": "Pod",
        "metadata": {
            "name": "kube-controller-manager",
            "namespace": "kube-system",
            "labels": {"component": "kube-controller-manager"},
        },
        "spec": {"containers": [
            {"command": ["kube-controller-manager", "--cluster-cidr=10.244.0.0/16"]}
        ]},
    },
]

network = discover(MemoryClient(objects), "submariner-operator")
network.show()
# Network plugin:  generic
# Service CIDRs:   [10.96.0.0/12]
# Cluster CIDRs:   [10.244.0.0/16]
print(network.is_complete())   # True
```

When no kube-apiserver flag gives the service range, discovery creates a
service named `invalid-svc` with cluster IP `1.1.1.1` and reads the range
from the error that comes back. A `MemoryClient` accepts that service unless
told otherwise, in which case discovery raises `ValueError`; to simulate a
real API server, configure the rejection:

```python
from clusternet.kube import ApiError

client.fail_on_create(
    "Service",
    ApiError("provided IP is not in the valid range. The range of valid IPs is 10.96.0.0/12"),
)
```

## Example: allocating a Globalnet CIDR

```python
from clusternet.cidr import Config
from clusternet.globalnet import (
    allocate_and_update_global_cidr_config_map,
    create_config_map,
)
from clusternet.kube import MemoryClient
from clusternet.reporter import RecordingReporter

client = MemoryClient([])
create_config_map(client, True, "242.0.0.0/8", 65536, "broker-ns")

netconfig = Config(cluster_id="east")
allocate_and_update_global_cidr_config_map(
    client, "broker-ns", netconfig, RecordingReporter()
)
print(netconfig.global_cidr)            # 242.0.0.0/16
```

A second call for the same cluster returns the CIDR already recorded. A
`Config` may carry either a `global_cidr` or a `cluster_size`, not both.

## Errors

Errors are raised as exceptions: `clusternet.kube.NotFoundError`,
`AlreadyExistsError` and `ConflictError` (all `ApiError`) for store failures,
`ValueError` for invalid CIDRs, sizes, selectors and unreadable ConfigMap
data, and `clusternet.reporter.ReporterError` for failures reported through a
status reporter.

## What it does not do

- It does not talk to a Kubernetes API server. It ships only the in-memory
  `MemoryClient`; connecting to a live cluster needs a client of your own
  offering the same `get`, `list`, `create`, `update` and `delete` methods.
- It has no command-line tool; it is used as a library.

## Running the tests

```
pip install -e .[test]
pytest
```