"""Tests for the periodic housekeeping task and service lifecycle."""

import asyncio
from unittest.mock import Mock

import pytest

from storefront.adapters.rate_limit.base import SweepStats
from storefront.core.cache import CacheRegistry
from storefront.core.housekeeping import Housekeeper
from storefront.core.services import GuardServices, parse_allowlist


def _limiter_mock() -> Mock:
    limiter = Mock()
    limiter.sweep.return_value = SweepStats(
        counters_removed=1, blocks_removed=0, counters_remaining=2, blocks_remaining=0
    )
    return limiter


def test_run_once_sweeps_limiter_and_caches() -> None:
    limiter = _limiter_mock()
    caches = Mock(spec=CacheRegistry)
    caches.purge_expired.return_value = 3

    Housekeeper(limiter, caches).run_once()

    limiter.sweep.assert_called_once_with()
    caches.purge_expired.assert_called_once_with()


def test_invalid_interval() -> None:
    with pytest.raises(ValueError):
        Housekeeper(Mock(), Mock(), interval_seconds=0)


@pytest.mark.asyncio
async def test_loop_runs_until_stopped() -> None:
    limiter = _limiter_mock()
    caches = CacheRegistry({"products": 5})
    keeper = Housekeeper(limiter, caches, interval_seconds=0.01)

    await keeper.start()
    await keeper.start()  # second start is a no-op
    assert keeper.running is True

    await asyncio.sleep(0.05)
    await keeper.stop()

    assert keeper.running is False
    assert limiter.sweep.call_count >= 1


@pytest.mark.asyncio
async def test_loop_survives_sweep_failure() -> None:
    limiter = Mock()
    limiter.sweep.side_effect = RuntimeError("boom")
    keeper = Housekeeper(limiter, CacheRegistry(), interval_seconds=0.01)

    await keeper.start()
    await asyncio.sleep(0.05)

    assert keeper.running is True
    assert limiter.sweep.call_count >= 2
    await keeper.stop()


@pytest.mark.asyncio
async def test_stop_without_start_is_harmless() -> None:
    await Housekeeper(Mock(), CacheRegistry()).stop()


@pytest.mark.asyncio
async def test_services_close_drops_state(guard_services: GuardServices) -> None:
    await guard_services.start()
    guard_services.caches.named_cache("products").set("k", 1, 60)
    guard_services.limiter.check("auth", "203.0.113.7")

    await guard_services.aclose()

    assert guard_services.housekeeper.running is False
    assert guard_services.caches.named_cache("products").get("k") is None
    assert guard_services.limiter.stats() == {"counters": 0, "blocks": 0}


def test_parse_allowlist() -> None:
    assert parse_allowlist(" 127.0.0.1 ,, 203.0.113.7 ") == {"127.0.0.1", "203.0.113.7"}
    assert parse_allowlist("") == set()
