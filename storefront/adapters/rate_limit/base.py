"""Rate limiter interfaces.

The HTTP layer depends on this abstraction (not the concrete implementation)
so the in-memory store can later be swapped for a shared one with minimal
changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitRule:
    """Limit applied to one traffic category.

    Attributes:
        name: Category name; counters are kept per (name, identifier).
        max_requests: Requests allowed inside one sliding window.
        window_seconds: Sliding window length in seconds.
        block_duration_seconds: Escalated block length; ``None`` uses the
            limiter-wide default.
    """

    name: str
    max_requests: int
    window_seconds: float
    block_duration_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.block_duration_seconds is not None and self.block_duration_seconds <= 0:
            raise ValueError("block_duration_seconds must be > 0")


DEFAULT_CATEGORY = "api"

DEFAULT_RULES: dict[str, RateLimitRule] = {
    "auth": RateLimitRule(name="auth", max_requests=5, window_seconds=15 * 60),
    "api": RateLimitRule(name="api", max_requests=60, window_seconds=60),
    "payment": RateLimitRule(name="payment", max_requests=3, window_seconds=5 * 60),
}


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a throttle check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window for the applied rule.
        remaining: Requests left in the current window (0 when denied).
        retry_after_seconds: Positive wait time when denied, ``None`` otherwise.
        blocked: True when the denial comes from an escalated block.
    """

    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int | None = None
    blocked: bool = False


@dataclass(frozen=True)
class SweepStats:
    """Outcome of a housekeeping sweep."""

    counters_removed: int
    blocks_removed: int
    counters_remaining: int
    blocks_remaining: int


class AbstractRateLimiter(ABC):
    """Interface for request throttles."""

    @abstractmethod
    def check(self, category: str, identifier: str) -> RateLimitResult:
        """Record a request for ``identifier`` under ``category`` if allowed.

        Unknown categories resolve to the ``api`` rule.
        """
        raise NotImplementedError

    @abstractmethod
    def check_rule(self, rule: RateLimitRule, identifier: str) -> RateLimitResult:
        """Same as ``check`` with an explicit rule instead of a category."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self, now: float | None = None) -> SweepStats:
        """Drop idle counters and expired blocks."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, identifier: str | None = None) -> None:
        """Forget state for one identifier, or for everyone when ``None``."""
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> dict[str, int]:
        """Return state sizes (counters, blocks) without identifiers."""
        raise NotImplementedError
