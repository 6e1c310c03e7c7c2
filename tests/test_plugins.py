import json

import pytest

from clusternet.cluster_network import NetworkPlugin
from clusternet.kube import ApiError, MemoryClient
from clusternet.plugins import (
    discover_calico_network,
    discover_canal_flannel_network,
    discover_flannel_network,
    discover_kind_network,
    discover_openshift4_network,
    discover_ovn_kubernetes_network,
    discover_weave_network,
    extract_pod_cidr_from_net_config_json,
    parse_os4_network,
)

TEST_POD_CIDR = "1.2.3.4/16"
TEST_SERVICE_CIDR = "4.5.6.7/16"
TEST_SERVICE_CIDR_FROM_SERVICE = "7.8.9.10/16"
FLANNEL_POD_CIDR = "10.0.0.0/8"

NET_CONF = """{
    "Network": "10.0.0.0/8",
    "SubnetLen": 20,
    "SubnetMin": "10.10.0.0",
    "SubnetMax": "10.99.0.0",
    "Backend": {
        "Type": "udp",
        "Port": 7890
    }
}"""


def new_test_client(*objects):
    message = (
        'The Service "invalid-svc" is invalid: spec.clusterIPs: Invalid value: []string{"1.1.1.1"}: '
        "failed to allocated ip:1.1.1.1 with error:provided IP is not in the valid range. "
        f"The range of valid IPs is {TEST_SERVICE_CIDR_FROM_SERVICE}"
    )
    return MemoryClient(objects).fail_on_create("Service", ApiError(message))


def fake_pod(component, command=(), env=(), namespace="default", name=None):
    return {
        "kind": "Pod",
        "metadata": {
            "name": name or component,
            "namespace": namespace,
            "labels": {"component": component, "name": component, "app": component},
        },
        "spec": {"containers": [{"command": list(command), "env": list(env)}]},
    }


def kube_api_server_pod():
    return fake_pod("kube-apiserver", ["kube-apiserver", "--service-cluster-ip-range=" + TEST_SERVICE_CIDR])


def kube_controller_manager_pod():
    return fake_pod("kube-controller-manager", ["kube-controller-manager", "--cluster-cidr=" + TEST_POD_CIDR])


def kube_proxy_pod():
    return fake_pod("kube-proxy", ["kube-proxy", "--cluster-cidr=" + TEST_POD_CIDR])


def config_map(name, namespace, data):
    return {"kind": "ConfigMap", "metadata": {"name": name, "namespace": namespace}, "data": data}


def flannel_daemon_set(volumes=None):
    if volumes is None:
        volumes = [{"name": "flannel-cfg", "configMap": {"name": "kube-flannel-cfg"}}]
    return {
        "kind": "DaemonSet",
        "metadata": {"name": "kube-flannel-ds", "namespace": "kube-system"},
        "spec": {"template": {"metadata": {}, "spec": {"volumes": volumes}}},
    }


# --- Calico ---


def test_calico_without_kube_pods_has_only_service_cidrs():
    client = new_test_client(config_map("calico-config", "kube-system", {}))
    network = discover_calico_network(client)
    assert network.network_plugin == NetworkPlugin.CALICO
    assert network.pod_cidrs == []
    assert network.service_cidrs == [TEST_SERVICE_CIDR_FROM_SERVICE]


def test_calico_with_kube_pods_has_pod_and_service_cidrs():
    client = new_test_client(
        config_map("calico-config", "kube-system", {}),
        kube_api_server_pod(),
        kube_controller_manager_pod(),
    )
    network = discover_calico_network(client)
    assert network.network_plugin == NetworkPlugin.CALICO
    assert network.pod_cidrs == [TEST_POD_CIDR]
    assert network.service_cidrs == [TEST_SERVICE_CIDR]


def test_calico_detected_by_daemon_set():
    daemon_set = {"kind": "DaemonSet", "metadata": {"name": "calico-node", "namespace": "calico-system"}}
    network = discover_calico_network(new_test_client(daemon_set, kube_api_server_pod()))
    assert network.network_plugin == NetworkPlugin.CALICO
    assert network.service_cidrs == [TEST_SERVICE_CIDR]


def test_calico_absent_returns_none():
    assert discover_calico_network(new_test_client(kube_api_server_pod())) is None


# --- Canal ---


def test_canal_without_kube_pods():
    client = new_test_client(config_map("canal-config", "kube-system", {"net-conf.json": NET_CONF}))
    network = discover_canal_flannel_network(client)
    assert network.network_plugin == NetworkPlugin.CANAL_FLANNEL
    assert network.pod_cidrs == [FLANNEL_POD_CIDR]
    assert network.service_cidrs == [TEST_SERVICE_CIDR_FROM_SERVICE]


def test_canal_with_kube_api_pod():
    client = new_test_client(
        config_map("canal-config", "kube-system", {"net-conf.json": NET_CONF}), kube_api_server_pod()
    )
    network = discover_canal_flannel_network(client)
    assert network.pod_cidrs == [FLANNEL_POD_CIDR]
    assert network.service_cidrs == [TEST_SERVICE_CIDR]


def test_canal_missing_config_map_returns_none():
    assert discover_canal_flannel_network(new_test_client()) is None


def test_canal_unreadable_net_conf_returns_none():
    client = new_test_client(config_map("canal-config", "kube-system", {"net-conf.json": "{not json"}))
    assert discover_canal_flannel_network(client) is None


# --- net-conf.json extraction ---


@pytest.mark.parametrize(
    "data, expected",
    [
        ({"net-conf.json": NET_CONF}, FLANNEL_POD_CIDR),
        ({}, None),
        ({"net-conf.json": ""}, None),
        ({"net-conf.json": "[1, 2]"}, None),
        ({"net-conf.json": '{"Network": 5}'}, None),
        ({"net-conf.json": '{"SubnetLen": 20}'}, ""),
        ({"net-conf.json": json.dumps({"network": "10.1.0.0/16"})}, "10.1.0.0/16"),
    ],
)
def test_extract_pod_cidr_from_net_config_json(data, expected):
    assert extract_pod_cidr_from_net_config_json(config_map("cfg", "kube-system", data)) == expected


# --- Flannel ---


def test_flannel_with_daemon_set_and_config_map():
    client = new_test_client(
        flannel_daemon_set(), config_map("kube-flannel-cfg", "kube-system", {"net-conf.json": NET_CONF})
    )
    network = discover_flannel_network(client)
    assert network.network_plugin == NetworkPlugin.FLANNEL
    assert network.pod_cidrs == [FLANNEL_POD_CIDR]
    assert network.service_cidrs == [TEST_SERVICE_CIDR_FROM_SERVICE]


def test_flannel_without_daemon_set_returns_none():
    assert discover_flannel_network(new_test_client()) is None


def test_flannel_without_config_map_returns_none():
    assert discover_flannel_network(new_test_client(flannel_daemon_set())) is None


def test_flannel_volume_without_config_map_uses_pod_ip_range():
    client = new_test_client(flannel_daemon_set([{"name": "flannel-run"}]), kube_proxy_pod())
    network = discover_flannel_network(client)
    assert network.network_plugin == NetworkPlugin.FLANNEL
    assert network.pod_cidrs == [TEST_POD_CIDR]


# --- kindnet ---


def kindnet_pod():
    return fake_pod("kindnet", ["kindnet"], [{"name": "POD_SUBNET", "value": TEST_POD_CIDR}])


def test_kindnet_without_kube_api():
    network = discover_kind_network(new_test_client(kindnet_pod()))
    assert network.network_plugin == NetworkPlugin.KIND_NET
    assert network.pod_cidrs == [TEST_POD_CIDR]
    assert network.service_cidrs == [TEST_SERVICE_CIDR_FROM_SERVICE]


def test_kindnet_with_kube_api():
    network = discover_kind_network(new_test_client(kindnet_pod(), kube_api_server_pod()))
    assert network.pod_cidrs == [TEST_POD_CIDR]
    assert network.service_cidrs == [TEST_SERVICE_CIDR]


def test_kindnet_ignores_service_range_errors():
    network = discover_kind_network(MemoryClient([kindnet_pod()]))
    assert network.pod_cidrs == [TEST_POD_CIDR]
    assert network.service_cidrs == []


def test_kindnet_absent_returns_none():
    assert discover_kind_network(new_test_client(kube_api_server_pod())) is None


# --- Weave ---


def weave_pod():
    return fake_pod("weave-net", ["weave-net"], [{"name": "IPALLOC_RANGE", "value": TEST_POD_CIDR}])


def test_weave_without_kube_api():
    network = discover_weave_network(new_test_client(weave_pod()))
    assert network.network_plugin == NetworkPlugin.WEAVE_NET
    assert network.pod_cidrs == [TEST_POD_CIDR]
    assert network.service_cidrs == [TEST_SERVICE_CIDR_FROM_SERVICE]


def test_weave_with_kube_api():
    network = discover_weave_network(new_test_client(weave_pod(), kube_api_server_pod()))
    assert network.pod_cidrs == [TEST_POD_CIDR]
    assert network.service_cidrs == [TEST_SERVICE_CIDR]


def test_weave_absent_returns_none():
    assert discover_weave_network(new_test_client()) is None


# --- OVN-Kubernetes ---

OVN_NAMESPACE = "ovn-kubernetes"


def ovn_pod():
    return fake_pod("ovnkube-node", namespace=OVN_NAMESPACE)


def test_ovn_without_config_map():
    network = discover_ovn_kubernetes_network(new_test_client(ovn_pod()))
    assert network.network_plugin == NetworkPlugin.OVN_KUBERNETES
    assert network.pod_cidrs == []
    assert network.service_cidrs == []


def test_ovn_with_config_map():
    client = new_test_client(
        ovn_pod(),
        config_map("ovn-config", OVN_NAMESPACE, {"net_cidr": TEST_POD_CIDR, "svc_cidr": TEST_SERVICE_CIDR}),
    )
    network = discover_ovn_kubernetes_network(client)
    assert network.network_plugin == NetworkPlugin.OVN_KUBERNETES
    assert network.pod_cidrs == [TEST_POD_CIDR]
    assert network.service_cidrs == [TEST_SERVICE_CIDR]


def test_ovn_absent_returns_none():
    assert discover_ovn_kubernetes_network(new_test_client()) is None


# --- OpenShift 4 ---


def network_resource(spec):
    return {
        "apiVersion": "config.openshift.io/v1",
        "kind": "Network",
        "metadata": {"name": "cluster", "generation": 2},
        "spec": spec,
        "status": {
            "clusterNetwork": [{"cidr": "10.132.0.0/14", "hostPrefix": 23}],
            "clusterNetworkMTU": 8951,
            "networkType": "OpenShiftSDN",
            "serviceNetwork": ["172.31.0.0/16"],
        },
    }


FULL_SPEC = {
    "clusterNetwork": [
        {"cidr": "10.128.0.0/14", "hostPrefix": 23},
        {"cidr": "10.132.0.0/14", "hostPrefix": 23},
    ],
    "externalIP": {"policy": {}},
    "networkType": "OpenShiftSDN",
    "serviceNetwork": ["172.30.0.0/16"],
}


def test_openshift4_parses_pod_and_service_networks():
    network = discover_openshift4_network(MemoryClient([network_resource(FULL_SPEC)]))
    assert network.pod_cidrs == ["10.128.0.0/14", "10.132.0.0/14"]
    assert network.service_cidrs == ["172.30.0.0/16"]
    assert network.network_plugin == NetworkPlugin.OPENSHIFT_SDN


def test_openshift4_missing_cluster_networks_is_an_error():
    spec = {"externalIP": {"policy": {}}, "networkType": "OpenShiftSDN", "serviceNetwork": ["172.31.0.0/16"]}
    with pytest.raises(ValueError, match="clusterNetwork"):
        discover_openshift4_network(MemoryClient([network_resource(spec)]))


def test_openshift4_missing_service_network_is_an_error():
    spec = {
        "clusterNetwork": [{"cidr": "10.132.0.0/14", "hostPrefix": 23}],
        "externalIP": {"policy": {}},
        "networkType": "OpenShiftSDN",
    }
    with pytest.raises(ValueError, match="serviceNetwork"):
        discover_openshift4_network(MemoryClient([network_resource(spec)]))


def test_openshift4_absent_returns_none():
    assert discover_openshift4_network(MemoryClient()) is None


def test_parse_os4_network_maps_calico():
    spec = dict(FULL_SPEC, networkType="Calico")
    assert parse_os4_network(network_resource(spec)).network_plugin == NetworkPlugin.CALICO


def test_parse_os4_network_keeps_unknown_type():
    spec = dict(FULL_SPEC, networkType="SomethingElse")
    assert parse_os4_network(network_resource(spec)).network_plugin == "SomethingElse"


def test_parse_os4_network_missing_network_type_is_an_error():
    spec = {key: value for key, value in FULL_SPEC.items() if key != "networkType"}
    with pytest.raises(ValueError, match="networkType"):
        parse_os4_network(network_resource(spec))


def test_parse_os4_network_missing_cidr_is_an_error():
    spec = dict(FULL_SPEC, clusterNetwork=[{"hostPrefix": 23}])
    with pytest.raises(ValueError, match="field cidr expected"):
        parse_os4_network(network_resource(spec))


def test_parse_os4_network_wrong_cluster_network_type_is_an_error():
    spec = dict(FULL_SPEC, clusterNetwork="10.128.0.0/14")
    with pytest.raises(ValueError, match="error retrieving spec.clusterNetwork"):
        parse_os4_network(network_resource(spec))


def test_parse_os4_network_non_string_service_entry_is_an_error():
    spec = dict(FULL_SPEC, serviceNetwork=[42])
    with pytest.raises(ValueError, match="not a string"):
        parse_os4_network(network_resource(spec))