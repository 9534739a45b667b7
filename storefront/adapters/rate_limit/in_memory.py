"""In-memory sliding-window rate limiter with escalating blocks.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state. No lock is held while a
  request handler runs, only during the bookkeeping of a single check.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

from storefront.adapters.rate_limit.base import (
    DEFAULT_CATEGORY,
    DEFAULT_RULES,
    AbstractRateLimiter,
    RateLimitResult,
    RateLimitRule,
    SweepStats,
)
from storefront.core.logging import hash_identifier

logger = logging.getLogger(__name__)

UNKNOWN_IDENTIFIER = "0.0.0.0"


@dataclass
class _CounterRecord:
    window_seconds: float
    timestamps: deque[float] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class InMemorySlidingWindowRateLimiter(AbstractRateLimiter):
    """Sliding-window request counter keyed by (category, identifier).

    Every attempt inside the window is recorded, including denied ones, so a
    client that keeps retrying while throttled eventually crosses the
    escalation threshold (``escalation_multiplier * max_requests``) and is
    blocked across all categories for ``block_duration_seconds``.

    Important:
        This limiter is per-process only. If the API runs with multiple
        workers, each worker enforces its own independent limits.
    """

    def __init__(
        self,
        *,
        rules: Mapping[str, RateLimitRule] | None = None,
        allowlist: Iterable[str] = (),
        escalation_multiplier: float = 2.0,
        block_duration_seconds: float = 30 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            rules: Category name to rule mapping. Defaults to auth/api/payment.
            allowlist: Identifiers that are never throttled.
            escalation_multiplier: Windowed attempt count, as a multiple of
                ``max_requests``, above which a client gets blocked.
            block_duration_seconds: Default escalated block length.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If escalation settings are invalid.
        """
        if escalation_multiplier < 1:
            raise ValueError("escalation_multiplier must be >= 1")
        if block_duration_seconds <= 0:
            raise ValueError("block_duration_seconds must be > 0")

        self._rules: dict[str, RateLimitRule] = dict(rules or DEFAULT_RULES)
        self._fallback_rule = self._rules.get(DEFAULT_CATEGORY, DEFAULT_RULES[DEFAULT_CATEGORY])
        self._allowlist = frozenset(allowlist)
        self._escalation_multiplier = escalation_multiplier
        self._block_duration_seconds = block_duration_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._counters: dict[tuple[str, str], _CounterRecord] = {}
        self._blocks: dict[str, float] = {}

    @property
    def rules(self) -> Mapping[str, RateLimitRule]:
        return dict(self._rules)

    def resolve_rule(self, category: str) -> RateLimitRule:
        """Return the rule for ``category``, falling back to ``api``."""
        rule = self._rules.get(category)
        if rule is None:
            logger.debug(
                "rate_limit.category_fallback",
                extra={"category": category, "fallback": self._fallback_rule.name},
            )
            return self._fallback_rule
        return rule

    def _counter_scope(self, rule: RateLimitRule) -> str:
        """Counter namespace for ``rule``.

        Configured category rules count under their name. Any other rule,
        including one that reuses a category name with different limits,
        gets a namespace derived from its parameters.
        """
        if self._rules.get(rule.name) == rule or (
            rule.name not in self._rules and rule == self._fallback_rule
        ):
            return rule.name
        return f"{rule.name}:{rule.max_requests}/{rule.window_seconds:g}"

    def check(self, category: str, identifier: str) -> RateLimitResult:
        return self.check_rule(self.resolve_rule(category), identifier)

    def check_rule(self, rule: RateLimitRule, identifier: str) -> RateLimitResult:
        """Check and record one request attempt.

        Args:
            rule: Limit to apply.
            identifier: Client identifier; empty values map to a sentinel.

        Returns:
            RateLimitResult with the decision and quota metadata.
        """
        if not isinstance(identifier, str) or not identifier:
            identifier = UNKNOWN_IDENTIFIER

        if identifier in self._allowlist:
            return RateLimitResult(
                allowed=True,
                limit=rule.max_requests,
                remaining=rule.max_requests,
            )

        now = self._clock()

        with self._lock:
            blocked = self._blocked_result(rule, identifier, now)
            if blocked is not None:
                return blocked

            key = (self._counter_scope(rule), identifier)
            record = self._counters.get(key)
            if record is None:
                record = _CounterRecord(window_seconds=rule.window_seconds)
                self._counters[key] = record
            record.window_seconds = rule.window_seconds
            record.prune(now)

            count = len(record.timestamps)
            record.timestamps.append(now)

            if count < rule.max_requests:
                return RateLimitResult(
                    allowed=True,
                    limit=rule.max_requests,
                    remaining=rule.max_requests - count - 1,
                )

            if count > rule.max_requests * self._escalation_multiplier:
                self._escalate(rule, identifier, now, count)

            return RateLimitResult(
                allowed=False,
                limit=rule.max_requests,
                remaining=0,
                retry_after_seconds=max(1, math.ceil(rule.window_seconds)),
            )

    def _blocked_result(self, rule: RateLimitRule, identifier: str, now: float) -> RateLimitResult | None:
        block_until = self._blocks.get(identifier)
        if block_until is None:
            return None
        if block_until <= now:
            del self._blocks[identifier]
            return None
        return RateLimitResult(
            allowed=False,
            limit=rule.max_requests,
            remaining=0,
            retry_after_seconds=max(1, math.ceil(block_until - now)),
            blocked=True,
        )

    def _escalate(self, rule: RateLimitRule, identifier: str, now: float, count: int) -> None:
        duration = rule.block_duration_seconds or self._block_duration_seconds
        block_until = max(self._blocks.get(identifier, 0.0), now + duration)
        self._blocks[identifier] = block_until
        logger.warning(
            "rate_limit.client_blocked",
            extra={
                "category": rule.name,
                "identifier_hash": hash_identifier(identifier),
                "attempts_in_window": count + 1,
                "limit": rule.max_requests,
                "block_s": duration,
            },
        )

    def sweep(self, now: float | None = None) -> SweepStats:
        """Drop counters with no timestamps in their window and expired blocks."""
        if now is None:
            now = self._clock()

        with self._lock:
            idle_keys = []
            for key, record in self._counters.items():
                record.prune(now)
                if not record.timestamps:
                    idle_keys.append(key)
            for key in idle_keys:
                del self._counters[key]

            expired = [ident for ident, until in self._blocks.items() if until <= now]
            for ident in expired:
                del self._blocks[ident]

            return SweepStats(
                counters_removed=len(idle_keys),
                blocks_removed=len(expired),
                counters_remaining=len(self._counters),
                blocks_remaining=len(self._blocks),
            )

    def reset(self, identifier: str | None = None) -> None:
        with self._lock:
            if identifier is None:
                self._counters.clear()
                self._blocks.clear()
                return
            for key in [k for k in self._counters if k[1] == identifier]:
                del self._counters[key]
            self._blocks.pop(identifier, None)

    def stats(self) -> dict[str, int]:
        """Return state sizes without exposing identifiers."""
        with self._lock:
            return {
                "counters": len(self._counters),
                "blocks": len(self._blocks),
            }
