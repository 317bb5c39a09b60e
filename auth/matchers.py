"""
auth/matchers.py -- Pure whitelist and IP-filter helpers.

No logging and no state: callers decide what a malformed entry means.
"""

from __future__ import annotations

import ipaddress


def check_whitelist(whitelist: str, value: str) -> bool:
    """Return True if value is an entry of the comma-separated whitelist.

    An empty (or whitespace-only) whitelist means no restriction is
    configured and everything matches. Entries are trimmed, value is not;
    comparison is exact and case-sensitive.
    """
    if not whitelist.strip():
        return True
    return any(entry.strip() == value for entry in whitelist.split(","))


def _client_address(ip: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    # Dual-stack listeners report IPv4 peers as ::ffff:a.b.c.d.
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def filter_ip(entry: str, ip: str) -> bool:
    """Return True if ip matches a single address or falls inside a CIDR block.

    Raises ValueError if entry is not a valid address or network. A client
    address that cannot be parsed never matches. IPv4-mapped IPv6 client
    addresses are compared as their IPv4 form.
    """
    entry = entry.strip()
    if "/" in entry:
        network = ipaddress.ip_network(entry, strict=False)
        addr = _client_address(ip)
        return addr is not None and addr in network

    expected = ipaddress.ip_address(entry)
    addr = _client_address(ip)
    return addr is not None and addr == expected
