"""Application-scoped services for throttling and caching.

``GuardServices`` is built once per application in the lifespan handler and
stored on ``app.state.services``. Handlers reach it through the request, so
tests can build isolated instances with their own clocks and limits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from storefront.adapters.rate_limit.base import AbstractRateLimiter, RateLimitRule
from storefront.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from storefront.core.cache import CacheRegistry
from storefront.core.config import Settings, settings as default_settings
from storefront.core.housekeeping import Housekeeper

logger = logging.getLogger(__name__)


def parse_allowlist(value: str | None) -> set[str]:
    """Parse a comma-separated allow-list into a set.

    Examples:
        >>> sorted(parse_allowlist("127.0.0.1, 203.0.113.7"))
        ['127.0.0.1', '203.0.113.7']
        >>> parse_allowlist(None)
        set()
    """
    if not value:
        return set()
    return {item.strip() for item in value.split(",") if item.strip()}


def build_rules(cfg: Settings) -> dict[str, RateLimitRule]:
    rl = cfg.rate_limit
    return {
        "auth": RateLimitRule("auth", rl.auth_max_requests, rl.auth_window_seconds),
        "api": RateLimitRule("api", rl.api_max_requests, rl.api_window_seconds),
        "payment": RateLimitRule("payment", rl.payment_max_requests, rl.payment_window_seconds),
    }


@dataclass
class GuardServices:
    """Throttle, caches and their housekeeping for one application instance."""

    limiter: AbstractRateLimiter
    caches: CacheRegistry
    housekeeper: Housekeeper
    rate_limit_enabled: bool = True
    include_rate_limit_headers: bool = True

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> "GuardServices":
        cfg = cfg or default_settings
        limiter = InMemorySlidingWindowRateLimiter(
            rules=build_rules(cfg),
            allowlist=parse_allowlist(cfg.rate_limit.allowlist),
            escalation_multiplier=cfg.rate_limit.escalation_multiplier,
            block_duration_seconds=cfg.rate_limit.block_duration_seconds,
        )
        caches = CacheRegistry.from_settings(cfg.cache)
        housekeeper = Housekeeper(
            limiter,
            caches,
            interval_seconds=cfg.cache.housekeeping_interval_seconds,
        )
        return cls(
            limiter=limiter,
            caches=caches,
            housekeeper=housekeeper,
            rate_limit_enabled=cfg.rate_limit.enabled,
            include_rate_limit_headers=cfg.rate_limit.include_headers,
        )

    async def start(self) -> None:
        await self.housekeeper.start()
        logger.info(
            "services.started",
            extra={"rate_limit_enabled": self.rate_limit_enabled, "caches": self.caches.names()},
        )

    async def aclose(self) -> None:
        """Stop housekeeping and drop all cached state."""
        await self.housekeeper.stop()
        self.caches.clear_all()
        self.limiter.reset()
        logger.info("services.stopped")


def get_services(request: Request) -> GuardServices:
    """FastAPI dependency returning the application's ``GuardServices``."""
    return request.app.state.services


def get_caches(request: Request) -> CacheRegistry:
    """FastAPI dependency returning the application's cache registry."""
    return get_services(request).caches
