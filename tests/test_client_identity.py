"""Tests for client identifier resolution."""

from types import SimpleNamespace

import pytest
from starlette.requests import Request

from storefront.core.client_identity import (
    UNKNOWN_CLIENT,
    is_private_address,
    resolve_client_identifier,
)


def _request(headers: dict[str, str] | None = None, host: str | None = "198.51.100.20") -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (host, 50000) if host is not None else None,
    }
    return Request(scope)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("10.0.0.1", True),
        ("172.16.5.4", True),
        ("172.31.255.255", True),
        ("172.32.0.1", False),
        ("192.168.1.1", True),
        ("203.0.113.7", False),
        ("::1", False),
        ("garbage", False),
        ("", False),
    ],
)
def test_is_private_address(value: str, expected: bool) -> None:
    assert is_private_address(value) is expected


def test_first_public_forwarded_entry_wins() -> None:
    request = _request({"X-Forwarded-For": "10.0.0.5, 203.0.113.7, 198.51.100.1"})

    assert resolve_client_identifier(request) == "203.0.113.7"


def test_malformed_forwarded_entries_are_skipped() -> None:
    request = _request({"X-Forwarded-For": "unknown, , 203.0.113.9"})

    assert resolve_client_identifier(request) == "203.0.113.9"


def test_all_private_forwarded_chain_falls_back_to_real_ip() -> None:
    request = _request({"X-Forwarded-For": "10.0.0.5, 192.168.0.2", "X-Real-IP": "203.0.113.50"})

    assert resolve_client_identifier(request) == "203.0.113.50"


def test_falls_back_to_peer_address() -> None:
    assert resolve_client_identifier(_request(host="198.51.100.20")) == "198.51.100.20"


def test_sentinel_when_nothing_is_known() -> None:
    assert resolve_client_identifier(_request(host=None)) == UNKNOWN_CLIENT


def test_never_raises_on_odd_request_objects() -> None:
    assert resolve_client_identifier(object()) == UNKNOWN_CLIENT
    assert resolve_client_identifier(SimpleNamespace(headers=None, client=None)) == UNKNOWN_CLIENT
    odd = SimpleNamespace(headers={"x-forwarded-for": 42}, client=SimpleNamespace(host="  "))
    assert resolve_client_identifier(odd) == UNKNOWN_CLIENT
