"""IPv4 address selection: subnet lists, random addresses and offsets."""

from __future__ import annotations

import ipaddress
import logging
import random
import re
from pathlib import Path

_log = logging.getLogger(__name__)

DEFAULT_SUBNETS_PATH = "assets/ips.txt"

_PREFIX_PATTERN = re.compile(r"\+?\d+")
_PRIVATE_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)
_LOOPBACK = ipaddress.IPv4Network("127.0.0.0/8")
_MASK32 = 0xFFFFFFFF

Subnet = tuple[ipaddress.IPv4Address, int]


def _parse_subnet(line: str) -> Subnet | None:
    ip_text, sep, prefix_text = line.partition("/")
    if not sep or not _PREFIX_PATTERN.fullmatch(prefix_text):
        return None
    prefix = int(prefix_text)
    if prefix > 32:
        return None
    try:
        address = ipaddress.IPv4Address(ip_text)
    except ValueError:
        return None
    return address, prefix


def load_subnets(path: str | Path = DEFAULT_SUBNETS_PATH) -> list[Subnet]:
    """Read ``address/prefix`` lines, skipping blanks, comments and bad entries."""
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        _log.warning("Could not read %s: %s, falling back to random IPs", path, exc)
        return []

    subnets = []
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        subnet = _parse_subnet(line)
        if subnet is not None:
            subnets.append(subnet)

    _log.info("Loaded %d subnets from %s", len(subnets), path)
    return subnets


def random_ip_from_subnet(
    network: ipaddress.IPv4Address | str, prefix_len: int
) -> ipaddress.IPv4Address:
    """Pick a host address inside the subnet, never the network address itself."""
    if not 0 <= prefix_len <= 32:
        raise ValueError(f"prefix length must be between 0 and 32, got {prefix_len}")
    base = int(ipaddress.IPv4Address(network))
    host_bits = 32 - prefix_len
    max_hosts = _MASK32 if host_bits >= 32 else (1 << host_bits) - 1
    offset = 1 if max_hosts <= 2 else random.randrange(1, max_hosts)
    return ipaddress.IPv4Address(base | offset)


def random_ipv4_from_subnets(subnets: list[Subnet]) -> ipaddress.IPv4Address:
    """Pick a random subnet and a random host in it; fall back to any public address."""
    if not subnets:
        return random_ipv4_fallback()
    network, prefix = random.choice(subnets)
    return random_ip_from_subnet(network, prefix)


def _is_excluded(address: ipaddress.IPv4Address) -> bool:
    if address in _LOOPBACK or address.packed[0] == 0:
        return True
    return any(address in net for net in _PRIVATE_NETWORKS)


def random_ipv4_fallback() -> ipaddress.IPv4Address:
    """Random unicast address outside the private and loopback ranges."""
    while True:
        address = ipaddress.IPv4Address(
            bytes(
                (
                    random.randint(1, 223),
                    random.randint(0, 255),
                    random.randint(0, 255),
                    random.randint(1, 254),
                )
            )
        )
        if not _is_excluded(address):
            return address


def increment_ip(base: ipaddress.IPv4Address | str, offset: int) -> ipaddress.IPv4Address:
    """Add ``offset`` to an address, wrapping around the 32-bit space."""
    return ipaddress.IPv4Address((int(ipaddress.IPv4Address(base)) + offset) & _MASK32)