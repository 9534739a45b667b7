"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import that might build settings.
"""

import os
from unittest.mock import Mock

import pytest

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("RATE_LIMIT_ALLOWLIST", "127.0.0.1")

from storefront.adapters.rate_limit.base import RateLimitRule  # noqa: E402
from storefront.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter  # noqa: E402
from storefront.core.cache import CacheRegistry  # noqa: E402
from storefront.core.housekeeping import Housekeeper  # noqa: E402
from storefront.core.services import GuardServices  # noqa: E402


class FakeTime:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1000.0)


@pytest.fixture
def small_rules() -> dict[str, RateLimitRule]:
    return {
        "auth": RateLimitRule("auth", max_requests=2, window_seconds=900),
        "api": RateLimitRule("api", max_requests=3, window_seconds=60),
        "payment": RateLimitRule("payment", max_requests=1, window_seconds=300),
    }


@pytest.fixture
def guard_services(clock: Mock, small_rules: dict[str, RateLimitRule]) -> GuardServices:
    """Services with tiny limits and a controllable clock."""
    limiter = InMemorySlidingWindowRateLimiter(rules=small_rules, clock=clock)
    caches = CacheRegistry({"products": 30, "categories": 15, "users": 25, "cart": 25})
    return GuardServices(
        limiter=limiter,
        caches=caches,
        housekeeper=Housekeeper(limiter, caches, interval_seconds=300),
    )
