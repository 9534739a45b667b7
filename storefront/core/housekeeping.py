"""Periodic sweep of throttle and cache state.

Throttle counters and cache entries are pruned lazily on access. Clients
that never come back would leave their records behind, so a background task
sweeps everything on a fixed interval. Nothing depends on the sweep for
correctness.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from storefront.adapters.rate_limit.base import AbstractRateLimiter
from storefront.core.cache import CacheRegistry

logger = logging.getLogger(__name__)


class Housekeeper:
    """Runs ``limiter.sweep()`` and ``caches.purge_expired()`` periodically."""

    def __init__(
        self,
        limiter: AbstractRateLimiter,
        caches: CacheRegistry,
        *,
        interval_seconds: float = 5 * 60,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._limiter = limiter
        self._caches = caches
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> None:
        """Perform a single sweep synchronously."""
        stats = self._limiter.sweep()
        purged = self._caches.purge_expired()
        logger.info(
            "housekeeping.sweep",
            extra={
                "counters_removed": stats.counters_removed,
                "blocks_removed": stats.blocks_removed,
                "counters_remaining": stats.counters_remaining,
                "blocks_remaining": stats.blocks_remaining,
                "cache_entries_purged": purged,
            },
        )

    async def start(self) -> None:
        """Start the background sweep task (idempotent)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="storefront-housekeeping")
        logger.info("housekeeping.started", extra={"interval_s": self._interval_seconds})

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("housekeeping.stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                self.run_once()
            except Exception as exc:
                logger.error(
                    "housekeeping.sweep_failed",
                    extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
                )
