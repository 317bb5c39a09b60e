"""
auth/dependencies.py -- Request-field extraction for forward-auth checks.

The reverse proxy forwards the original request's details in headers:
  X-Forwarded-Uri   the path (and query) the user asked for.
  X-Forwarded-For   the client address chain, trusted only from known proxies.
  Authorization     optional "Basic ..." credentials.

These helpers turn a Starlette/FastAPI Request into plain values. They never
raise for malformed input -- a broken header simply yields nothing.

Layer rule: may import from fastapi/starlette; no imports from core/.
"""

from __future__ import annotations

import base64
import binascii
import ipaddress
from collections.abc import Iterable

from fastapi import Request

TrustedProxy = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_trusted_proxies(value: str) -> list[TrustedProxy]:
    """Parse a comma-separated list of addresses/CIDRs. Raises ValueError on a bad entry."""
    return [ipaddress.ip_network(item.strip(), strict=False) for item in value.split(",") if item.strip()]


def get_basic_auth(request: Request) -> tuple[str, str] | None:
    """Return (username, password) from an Authorization: Basic header, or None."""
    header = request.headers.get("Authorization", "")
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


def _is_trusted(addr: ipaddress.IPv4Address | ipaddress.IPv6Address, trusted: Iterable[TrustedProxy]) -> bool:
    return any(addr in network for network in trusted)


def get_client_ip(request: Request, trusted_proxies: Iterable[TrustedProxy] = ()) -> str:
    """Return the real client IP.

    X-Forwarded-For is only honoured when the direct peer is a trusted proxy.
    It is then read right-to-left and the first untrusted address wins.
    """
    connection_ip = request.client.host if request.client else ""
    if not connection_ip:
        return ""

    try:
        connection_addr = ipaddress.ip_address(connection_ip)
    except ValueError:
        return connection_ip

    trusted = list(trusted_proxies)
    if not trusted or not _is_trusted(connection_addr, trusted):
        return connection_ip

    forwarded = request.headers.get("X-Forwarded-For", "")
    parts = [part.strip() for part in forwarded.split(",") if part.strip()]
    for part in reversed(parts):
        try:
            addr = ipaddress.ip_address(part)
        except ValueError:
            continue
        if not _is_trusted(addr, trusted):
            return part

    return connection_ip


def get_forwarded_uri(request: Request) -> str:
    """Return the original request URI forwarded by the proxy, or "" if absent."""
    return request.headers.get("X-Forwarded-Uri", "")
