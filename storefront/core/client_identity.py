"""Client identification for throttling.

Storefront traffic arrives through a CDN and a reverse proxy, so the
transport peer is usually the proxy. The identifier is taken from the
forwarded chain first, skipping internal hops.
"""

from __future__ import annotations

import ipaddress
from typing import Any

UNKNOWN_CLIENT = "0.0.0.0"

FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"

_PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def _parse_address(value: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


def is_private_address(value: str) -> bool:
    """Return True if ``value`` is an IPv4 address in an RFC 1918 range.

    Examples:
        >>> is_private_address("10.1.2.3")
        True
        >>> is_private_address("172.32.0.1")
        False
        >>> is_private_address("not-an-ip")
        False
    """
    address = _parse_address(value)
    if address is None or address.version != 4:
        return False
    return any(address in network for network in _PRIVATE_NETWORKS)


def _header(request: Any, name: str) -> str | None:
    headers = getattr(request, "headers", None)
    if headers is None:
        return None
    try:
        value = headers.get(name)
    except (AttributeError, TypeError):
        return None
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _peer_host(request: Any) -> str | None:
    client = getattr(request, "client", None)
    host = getattr(client, "host", None)
    if isinstance(host, str) and host.strip():
        return host.strip()
    return None


def resolve_client_identifier(request: Any) -> str:
    """Derive a stable, non-empty client identifier from request metadata.

    Resolution order:
    1. First ``X-Forwarded-For`` entry that is a valid IP address outside the
       private ranges (10/8, 172.16/12, 192.168/16).
    2. ``X-Real-IP`` header.
    3. Transport-level peer address (``request.client.host``).
    4. The ``0.0.0.0`` sentinel.

    Never raises: malformed or missing metadata falls through to the next
    source.

    Args:
        request: Any object exposing ``headers.get(name)`` and an optional
            ``client.host`` (Starlette/FastAPI ``Request`` fits).

    Returns:
        Client identifier string.
    """
    forwarded = _header(request, FORWARDED_FOR_HEADER)
    if forwarded:
        for entry in forwarded.split(","):
            candidate = entry.strip()
            if not candidate or _parse_address(candidate) is None:
                continue
            if not is_private_address(candidate):
                return candidate

    real_ip = _header(request, REAL_IP_HEADER)
    if real_ip:
        return real_ip

    return _peer_host(request) or UNKNOWN_CLIENT
