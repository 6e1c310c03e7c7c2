"""CIDR parsing, validation and global CIDR allocation."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

_CIDR_FORM = re.compile(r"^([^/]+)/(\d{1,3})$")
_UINT32 = 0xFFFFFFFF


@dataclass
class GlobalNetwork:
    """The global CIDRs assigned to one cluster."""

    global_cidrs: list[str] = field(default_factory=list)
    cluster_id: str = ""


@dataclass
class Info:
    """Globalnet settings of a broker and the global CIDRs already assigned."""

    enabled: bool = False
    cidr_range: str = ""
    cluster_size: int = 0
    cidr_info: dict[str, GlobalNetwork] = field(default_factory=dict)


@dataclass
class Config:
    """Globalnet settings requested for one cluster."""

    cluster_id: str = ""
    global_cidr: str = ""
    cluster_size: int = 0


@dataclass(frozen=True)
class CIDR:
    """A parsed CIDR with its host-bit count and last address as an integer."""

    network: IPNetwork
    size: int
    last_ip: int


def _parse_cidr(text: str) -> tuple[IPAddress, IPNetwork]:
    """Parse ``address/prefix`` into the address and its masked network."""
    match = _CIDR_FORM.match(text)
    if not match:
        raise ValueError(f"invalid CIDR address: {text}")
    try:
        interface = ipaddress.ip_interface(f"{match[1]}/{int(match[2])}")
    except ValueError:
        raise ValueError(f"invalid CIDR address: {text}") from None
    return interface.ip, interface.network


def _to_ip(value: int) -> ipaddress.IPv4Address:
    return ipaddress.IPv4Address(value & _UINT32)


def last_ip(network: IPNetwork) -> int:
    """Return the last address of a network as an integer."""
    host_bits = network.max_prefixlen - network.prefixlen
    return int(network.network_address) + (1 << host_bits) - 1


def new_cidr(cidr: str) -> CIDR:
    """Parse a CIDR string."""
    try:
        _, network = _parse_cidr(cidr)
    except ValueError:
        raise ValueError(f'invalid cidr "{cidr}" passed as input') from None
    return CIDR(network=network, size=network.max_prefixlen - network.prefixlen, last_ip=last_ip(network))


def is_overlapping_cidr(cidr_list: list[str], cidr: str) -> bool:
    """Return True if the CIDR overlaps any CIDR in the list."""
    _, new_net = _parse_cidr(cidr)
    for base in cidr_list:
        _, base_net = _parse_cidr(base)
        if new_net.network_address in base_net or base_net.network_address in new_net:
            return True
    return False


class _AllocationError(ValueError):
    def __init__(self, message: str, last: int = 0) -> None:
        super().__init__(message)
        self.last = last


@dataclass
class _GlobalPool:
    network: IPNetwork
    allocated: list[CIDR]

    def allocate_cidr(self, cidr: str) -> None:
        invalid = f"{cidr} not a valid subnet of {self.network}"
        try:
            requested_ip, requested_net = _parse_cidr(cidr)
        except ValueError:
            raise _AllocationError(invalid) from None
        if requested_ip not in self.network:
            raise _AllocationError(invalid)

        cluster = new_cidr(cidr)
        if _to_ip(cluster.last_ip) not in self.network:
            raise _AllocationError(invalid)

        for allocated in self.allocated:
            if requested_ip in allocated.network:
                raise _AllocationError(
                    f"{cidr} subset of already allocated globalCidr {allocated.network}", allocated.last_ip
                )
            if allocated.network.network_address in requested_net:
                raise _AllocationError(
                    f"{cidr} overlaps with already allocated globalCidr {allocated.network}", cluster.last_ip
                )

        self.allocated.append(cluster)

    def allocate_by_cluster_size(self, num_size: int) -> str:
        bit_size = (num_size - 1).bit_length() if num_size > 0 else 64
        prefix = self.network.max_prefixlen - bit_size
        cidr = f"{self.network.network_address}/{prefix}"

        try:
            self.allocate_cidr(cidr)
            return cidr
        except _AllocationError as exc:
            if exc.last == 0:
                raise
            last = exc.last

        while True:
            cidr = f"{_to_ip(last + 1)}/{prefix}"
            try:
                self.allocate_cidr(cidr)
                return cidr
            except _AllocationError as exc:
                if exc.last == 0:
                    raise ValueError("allocation not available") from exc
                last = exc.last


def allocate_global_cidr(globalnet_info: Info) -> str:
    """Find the first free block of the configured cluster size in the global CIDR range."""
    try:
        _, network = _parse_cidr(globalnet_info.cidr_range)
    except ValueError:
        raise ValueError(f"invalid GlobalCIDR {globalnet_info.cidr_range} configured") from None

    allocated = [
        new_cidr(other)
        for global_network in globalnet_info.cidr_info.values()
        for other in global_network.global_cidrs
    ]
    return _GlobalPool(network, allocated).allocate_by_cluster_size(globalnet_info.cluster_size)


def next_power_of_2(n: int) -> int:
    """Round a 32-bit unsigned value up to a power of two (0 stays 0)."""
    n = ((n & _UINT32) - 1) & _UINT32
    for shift in (1, 2, 4, 8, 16):
        n |= n >> shift
    return (n + 1) & _UINT32


def get_valid_cluster_size(cidr_range: str, cluster_size: int) -> int:
    """Round the cluster size up to a power of two and check it fits the range."""
    _, network = _parse_cidr(cidr_range)
    available = 1 << (network.max_prefixlen - network.prefixlen)
    rounded = next_power_of_2(cluster_size)
    if rounded > available // 2:
        raise ValueError(f"cluster size {cluster_size}, should be <= {available // 2}")
    if rounded == 0:
        raise ValueError("cluster size must be > 0")
    return rounded


def check_overlapping_cidrs(globalnet_info: Info, netconfig: Config) -> None:
    """Raise ValueError if the requested global CIDR overlaps another cluster's."""
    cidr = netconfig.global_cidr
    for cluster_id, global_network in globalnet_info.cidr_info.items():
        try:
            overlap = is_overlapping_cidr(global_network.global_cidrs, cidr)
        except ValueError as exc:
            raise ValueError(f"unable to validate overlapping CIDR: {exc}") from exc
        if overlap and cluster_id != netconfig.cluster_id:
            raise ValueError(f'invalid CIDR {cidr} overlaps with cluster "{cluster_id}"')


def is_cidr_preconfigured(cluster_id: str, global_networks: dict[str, GlobalNetwork]) -> bool:
    """Return True if the cluster already has a global CIDR."""
    global_network = global_networks.get(cluster_id)
    return global_network is not None and bool(global_network.global_cidrs)


def _is_link_local_multicast(ip: IPAddress) -> bool:
    if ip.version == 4:
        return ip in ipaddress.IPv4Network("224.0.0.0/24")
    packed = ip.packed
    return packed[0] == 0xFF and packed[1] & 0x0F == 0x02


def is_valid_cidr(cidr: str) -> None:
    """Raise ValueError unless the CIDR is parseable and not a reserved range."""
    ip, _ = _parse_cidr(cidr)
    if ip.version == 6 and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    if ip.is_unspecified:
        raise ValueError(f"{cidr} can't be unspecified")
    if ip.is_loopback:
        raise ValueError(f"{cidr} can't be in loopback range")
    if ip.is_link_local:
        raise ValueError(f"{cidr} can't be in link-local range")
    if _is_link_local_multicast(ip):
        raise ValueError(f"{cidr} can't be in link-local multicast range")