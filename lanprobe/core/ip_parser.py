"""
Subnet math: CIDR parsing, usable host counts and lazy host enumeration.
"""

import ipaddress
from functools import lru_cache
from typing import Iterator, List, Tuple

from lanprobe.core.errors import SubnetValidationError, SubnetTooLargeError

# Subnets larger than this are rejected before any probing starts
MAX_HOST_LIMIT = 65536


def parse_cidr(text: str) -> Tuple[int, int]:
    """
    Parse ``a.b.c.d/nn`` into ``(network_address, prefix_length)``.

    The returned network address is a 32-bit integer with host bits cleared.
    Raises SubnetValidationError for anything that is not IPv4 CIDR notation.
    """
    if not text or not text.strip():
        raise SubnetValidationError(text or '')

    parts = text.strip().split('/')
    if len(parts) != 2:
        raise SubnetValidationError(text)

    try:
        address = ipaddress.IPv4Address(parts[0].strip())
    except ValueError as exc:
        raise SubnetValidationError(text) from exc

    try:
        prefix = int(parts[1].strip())
    except ValueError as exc:
        raise SubnetValidationError(text) from exc

    if prefix < 0 or prefix > 32:
        raise SubnetValidationError(text, 'Prefix length must be between 0 and 32')

    return int(address) & _mask(prefix), prefix


def get_host_count(prefix: int) -> int:
    """Usable hosts for a prefix; /31 and /32 have none."""
    if prefix < 0 or prefix > 32:
        return 0
    if prefix >= 31:
        return 0
    return (1 << (32 - prefix)) - 2


def get_address_count(cidr: str) -> int:
    """Usable host count for a CIDR string, or 0 when it does not parse."""
    try:
        _, prefix = parse_cidr(cidr)
    except SubnetValidationError:
        return 0
    return get_host_count(prefix)


def validate_subnet(cidr: str, max_hosts: int = MAX_HOST_LIMIT) -> int:
    """
    Check that ``cidr`` can be scanned and return its host count.

    Raises SubnetValidationError when the subnet has no usable hosts and
    SubnetTooLargeError when it exceeds ``max_hosts``.
    """
    _, prefix = parse_cidr(cidr)
    count = get_host_count(prefix)
    if count <= 0:
        raise SubnetValidationError(cidr, 'Subnet has no usable host addresses')
    if count > max_hosts:
        raise SubnetTooLargeError(cidr, count, max_hosts)
    return count


class HostRange:
    """
    The usable host addresses of a subnet (network+1 ... broadcast-1).

    Nothing is materialized: iteration yields dotted-quad strings on demand
    and every ``iter()`` starts over from the first host.
    """

    def __init__(self, network: int, prefix: int):
        mask = _mask(prefix)
        self.network = network & mask
        self.prefix = prefix
        self.broadcast = self.network | (~mask & 0xFFFFFFFF)

    def __len__(self) -> int:
        return get_host_count(self.prefix)

    def __iter__(self) -> Iterator[str]:
        if len(self) == 0:
            return
        for value in range(self.network + 1, self.broadcast):
            yield int_to_ip(value)

    def __contains__(self, ip: object) -> bool:
        if not isinstance(ip, str) or len(self) == 0:
            return False
        try:
            value = int(ipaddress.IPv4Address(ip))
        except ValueError:
            return False
        return self.network < value < self.broadcast

    def __repr__(self) -> str:
        return f'HostRange({int_to_ip(self.network)}/{self.prefix})'


def host_addresses(network: int, prefix: int) -> HostRange:
    return HostRange(network, prefix)


def hosts_for_cidr(cidr: str) -> HostRange:
    network, prefix = parse_cidr(cidr)
    return HostRange(network, prefix)


def parse_ip_input(text: str) -> List[str]:
    """
    Split a comma/space separated list of CIDRs and normalize each one to
    its network address form. Raises on the first invalid entry.
    """
    subnets: List[str] = []
    for part in text.replace(';', ',').replace(' ', ',').split(','):
        part = part.strip()
        if not part:
            continue
        network, prefix = parse_cidr(part)
        normalized = f'{int_to_ip(network)}/{prefix}'
        if normalized not in subnets:
            subnets.append(normalized)
    return subnets


@lru_cache(maxsize=65536)
def ip_sort_key(ip: str) -> int:
    """32-bit sort key built from the four octets. Malformed input sorts first."""
    parts = ip.split('.')
    if len(parts) != 4:
        return 0
    try:
        octets = [int(p) for p in parts]
    except ValueError:
        return 0
    if any(o < 0 or o > 255 for o in octets):
        return 0
    return (octets[0] << 24) | (octets[1] << 16) | (octets[2] << 8) | octets[3]


def int_to_ip(value: int) -> str:
    return f'{(value >> 24) & 0xFF}.{(value >> 16) & 0xFF}.{(value >> 8) & 0xFF}.{value & 0xFF}'


def _mask(prefix: int) -> int:
    if prefix == 0:
        return 0
    return (0xFFFFFFFF << (32 - prefix)) & 0xFFFFFFFF
