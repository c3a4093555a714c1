"""Endpoint parsing and address classification helpers.

Shared by every socket-table dialect and by the hostname resolver.

Functions:
    - split_endpoint: "address:port" -> (address, port) using the last colon
    - join_endpoint: inverse of split_endpoint for non-wildcard endpoints
    - normalize_ip: strip IPv6 brackets and %zone suffixes
    - is_local_address: private / loopback / link-local classification
    - is_loopback_address: loopback only
    - is_wildcard_address: "*", 0.0.0.0 and ::
    - local_label: descriptive name for a local address
"""

import ipaddress
from typing import Optional, Tuple


LOCAL_NETWORKS = [
    ipaddress.ip_network('127.0.0.0/8'),     # Loopback
    ipaddress.ip_network('10.0.0.0/8'),      # Private Class A
    ipaddress.ip_network('172.16.0.0/12'),   # Private Class B
    ipaddress.ip_network('192.168.0.0/16'),  # Private Class C
    ipaddress.ip_network('169.254.0.0/16'),  # Link-local
    ipaddress.ip_network('::1/128'),         # IPv6 loopback
    ipaddress.ip_network('fe80::/10'),       # IPv6 link-local
    ipaddress.ip_network('fc00::/7'),        # IPv6 unique local (covers fd00::/8)
]

LINK_LOCAL_NETWORKS = [
    ipaddress.ip_network('169.254.0.0/16'),
    ipaddress.ip_network('fe80::/10'),
]

WILDCARD_ADDRESSES = {'*', '0.0.0.0', '::', '[::]'}


def split_endpoint(endpoint: Optional[str]) -> Tuple[str, int]:
    """Split an ``address:port`` string on its last colon.

    The last colon is used so IPv6 literals (``::1:631``, ``[::]:22``) keep
    their embedded colons in the address part.

    Args:
        endpoint: Endpoint text as printed by netstat, ss or lsof

    Returns:
        (address, port). Wildcards normalize: empty or ``*:*`` gives
        ("*", 0), an address of ``*`` becomes "0.0.0.0" and a
        non-numeric port (``*``) becomes 0.
    """
    if not endpoint or endpoint == '*:*':
        return '*', 0

    address, sep, port_str = endpoint.rpartition(':')
    if not sep:
        return endpoint, 0

    try:
        port = int(port_str)
    except ValueError:
        port = 0

    if address == '*':
        address = '0.0.0.0'

    return address, port


def join_endpoint(address: str, port: int) -> str:
    """Join an address and port back into endpoint text."""
    return f"{address}:{port}"


def normalize_ip(address: Optional[str]) -> str:
    """Strip IPv6 brackets and zone index (``[fe80::1%eth0]`` -> ``fe80::1``)."""
    if not address:
        return ''
    address = address.strip()
    if address.startswith('[') and address.endswith(']'):
        address = address[1:-1]
    return address.split('%', 1)[0]


def parse_ip(address: Optional[str]):
    """Return an ``ipaddress`` object, or None if the text is not an IP."""
    try:
        return ipaddress.ip_address(normalize_ip(address))
    except ValueError:
        return None


def is_valid_ip(address: Optional[str]) -> bool:
    return parse_ip(address) is not None


def _unmapped(ip):
    # ::ffff:10.0.0.1 classifies as its embedded IPv4 address
    if ip.version == 6 and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def is_local_address(address: Optional[str]) -> bool:
    """Check if an address is loopback, private or link-local.

    Non-IP text (hostnames, ``*``) is never local, except ``localhost``.
    """
    if not address:
        return False
    if address == 'localhost':
        return True

    ip = parse_ip(address)
    if ip is None:
        return False
    ip = _unmapped(ip)
    return any(ip in network for network in LOCAL_NETWORKS if network.version == ip.version)


def is_loopback_address(address: Optional[str]) -> bool:
    if address == 'localhost':
        return True
    ip = parse_ip(address)
    if ip is None:
        return False
    return _unmapped(ip).is_loopback


def is_wildcard_address(address: Optional[str]) -> bool:
    """Check if an address is a wildcard / unspecified placeholder."""
    if not address or address in WILDCARD_ADDRESSES:
        return True
    ip = parse_ip(address)
    return ip is not None and ip.is_unspecified


def local_label(address: str) -> Optional[str]:
    """Get a descriptive name for a local or unspecified address.

    Args:
        address: IP address text

    Returns:
        'localhost', 'any', 'link-local' or 'local'; None when the address
        is public (or not an IP at all) and needs a real lookup.
    """
    ip = parse_ip(address)
    if ip is None:
        return None
    ip = _unmapped(ip)

    if ip.is_loopback:
        return 'localhost'
    if ip.is_unspecified:
        return 'any'
    if any(ip in network for network in LINK_LOCAL_NETWORKS if network.version == ip.version):
        return 'link-local'
    if is_local_address(str(ip)):
        return 'local'
    return None


def is_local_socket(local_address: str, remote_address: str) -> bool:
    """Decide whether a socket is host-internal / LAN-only traffic.

    A socket counts as local when it is bound to a loopback address or when
    its peer lives in a private, loopback or link-local range. The host's own
    LAN address talking to a public peer is not local.
    """
    return is_loopback_address(local_address) or is_local_address(remote_address)
