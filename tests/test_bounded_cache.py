"""Unit tests for the bounded TTL cache and cache key builder."""

import asyncio
import re
import threading

import pytest

from storefront.core.errors import ValidationAppError
from storefront.utils import bounded_cache
from storefront.utils.bounded_cache import BoundedTTLCache, build_cache_key


@pytest.fixture
def patched_time(monkeypatch: pytest.MonkeyPatch, fake_time):
    monkeypatch.setattr(bounded_cache, "time", fake_time)
    return fake_time


def test_build_cache_key_is_order_independent() -> None:
    assert build_cache_key("product", {"b": 2, "a": 1}) == "product:a=1&b=2"
    assert build_cache_key("product", {"a": 1, "b": 2}) == "product:a=1&b=2"


def test_build_cache_key_empty_params_uses_default() -> None:
    assert build_cache_key("categories") == "categories:default"
    assert build_cache_key("categories", {}) == "categories:default"


def test_build_cache_key_renders_scalars() -> None:
    key = build_cache_key("products", {"active": True, "category": None, "page": 2})
    assert key == "products:active=true&category=null&page=2"


def test_build_cache_key_keeps_none_and_empty_string_apart() -> None:
    assert build_cache_key("products", {"search": None}) != build_cache_key("products", {"search": ""})


def test_set_then_get_round_trip() -> None:
    cache = BoundedTTLCache(max_size=10)
    cache.set("k", {"v": 1}, 60)

    assert cache.get("k") == {"v": 1}
    assert cache.get("missing") is None

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_entry_expires_after_ttl(patched_time) -> None:
    cache = BoundedTTLCache(max_size=10)
    cache.set("k", "v", 5)

    patched_time.advance(4.9)
    assert cache.get("k") == "v"

    patched_time.advance(0.2)
    assert cache.get("k") is None
    assert cache.size() == 0
    assert cache.stats()["expirations"] == 1


def test_default_ttl_applies_when_omitted(patched_time) -> None:
    cache = BoundedTTLCache(max_size=10, default_ttl_seconds=30)
    cache.set("k", "v")

    patched_time.advance(31)
    assert cache.get("k") is None


def test_overwrite_refreshes_expiry(patched_time) -> None:
    cache = BoundedTTLCache(max_size=10)
    cache.set("k", "old", 10)
    patched_time.advance(8)
    cache.set("k", "new", 10)

    # The first deadline has passed but the refreshed one has not
    patched_time.advance(5)
    assert cache.get("k") == "new"


def test_full_namespace_evicts_oldest_tenth() -> None:
    cache = BoundedTTLCache(max_size=30)
    for i in range(30):
        cache.set(f"k{i}", i, 60)

    cache.set("k30", 30, 60)

    # ceil(30 * 0.1) = 3 oldest entries dropped
    assert cache.size() == 30 - 3 + 1
    assert [cache.get(f"k{i}") for i in range(3)] == [None, None, None]
    assert cache.get("k3") == 3
    assert cache.get("k30") == 30
    assert cache.stats()["evictions"] == 3


def test_eviction_batch_rounds_up_for_small_namespaces() -> None:
    cache = BoundedTTLCache(max_size=5)
    for i in range(6):
        cache.set(f"k{i}", i, 60)

    assert cache.size() == 5
    assert cache.get("k0") is None


def test_overwrite_in_full_namespace_does_not_evict() -> None:
    cache = BoundedTTLCache(max_size=10)
    for i in range(10):
        cache.set(f"k{i}", i, 60)

    cache.set("k5", "updated", 60)

    assert cache.size() == 10
    assert cache.stats()["evictions"] == 0


def test_refreshed_key_moves_to_newest_position() -> None:
    cache = BoundedTTLCache(max_size=10)
    for i in range(10):
        cache.set(f"k{i}", i, 60)
    cache.set("k0", "again", 60)

    cache.set("k10", 10, 60)

    assert cache.get("k0") == "again"
    assert cache.get("k1") is None


def test_expired_entries_are_purged_before_evicting(patched_time) -> None:
    cache = BoundedTTLCache(max_size=10)
    cache.set("short", 1, 1)
    for i in range(9):
        cache.set(f"k{i}", i, 60)

    patched_time.advance(2)
    cache.set("new", "v", 60)

    assert cache.size() == 10
    assert cache.stats()["evictions"] == 0


def test_delete_reports_presence() -> None:
    cache = BoundedTTLCache()
    cache.set("k", 1, 60)

    assert cache.delete("k") is True
    assert cache.delete("k") is False
    assert cache.get("k") is None


def test_delete_reports_expired_entry_as_absent(patched_time) -> None:
    cache = BoundedTTLCache()
    cache.set("k", 1, 5)

    patched_time.advance(6)

    assert cache.delete("k") is False
    assert cache.size() == 0


def test_delete_pattern_removes_only_matches() -> None:
    cache = BoundedTTLCache()
    cache.set("product:id=p-1", 1, 60)
    cache.set("products:category=shoes&page=1", 2, 60)
    cache.set("categories:default", 3, 60)

    removed = cache.delete_pattern("^product")

    assert removed == 2
    assert cache.get("categories:default") == 3
    assert cache.size() == 1


def test_delete_pattern_accepts_compiled_pattern() -> None:
    cache = BoundedTTLCache()
    cache.set("user:id=42", 1, 60)
    cache.set("user:id=7", 2, 60)

    assert cache.delete_pattern(re.compile(r"id=42$")) == 1
    assert cache.get("user:id=7") == 2


def test_delete_pattern_rejects_invalid_regex() -> None:
    cache = BoundedTTLCache(name="products")

    with pytest.raises(ValidationAppError) as exc_info:
        cache.delete_pattern("[unclosed")

    assert exc_info.value.code == "invalid_cache_pattern"


def test_clear_resets_state() -> None:
    cache = BoundedTTLCache()
    cache.set("a", 1, 60)
    cache.get("a")

    cache.clear()

    stats = cache.stats()
    assert stats["entries"] == 0
    assert stats["hits"] == 0


@pytest.mark.parametrize("kwargs", [{"max_size": 0}, {"default_ttl_seconds": 0}])
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        BoundedTTLCache(**kwargs)


def test_set_rejects_non_positive_ttl() -> None:
    cache = BoundedTTLCache()
    with pytest.raises(ValueError):
        cache.set("k", 1, 0)


@pytest.mark.asyncio
async def test_get_or_set_calls_producer_once_while_valid() -> None:
    cache = BoundedTTLCache()
    calls = 0

    async def producer() -> str:
        nonlocal calls
        calls += 1
        return "value"

    results = [await cache.get_or_set("k", producer, 60) for _ in range(5)]

    assert results == ["value"] * 5
    assert calls == 1


@pytest.mark.asyncio
async def test_get_or_set_accepts_sync_producer() -> None:
    cache = BoundedTTLCache()

    assert await cache.get_or_set("k", lambda: 42, 60) == 42
    assert cache.get("k") == 42


@pytest.mark.asyncio
async def test_get_or_set_caches_none_values() -> None:
    cache = BoundedTTLCache()
    calls = 0

    def producer() -> None:
        nonlocal calls
        calls += 1
        return None

    await cache.get_or_set("k", producer, 60)
    await cache.get_or_set("k", producer, 60)

    assert calls == 1


@pytest.mark.asyncio
async def test_get_or_set_refreshes_after_expiry(patched_time) -> None:
    cache = BoundedTTLCache()
    values = iter(["first", "second"])

    assert await cache.get_or_set("k", lambda: next(values), 10) == "first"
    patched_time.advance(11)
    assert await cache.get_or_set("k", lambda: next(values), 10) == "second"


@pytest.mark.asyncio
async def test_get_or_set_producer_failure_propagates_and_stores_nothing() -> None:
    cache = BoundedTTLCache()

    async def failing() -> str:
        raise RuntimeError("catalog unavailable")

    with pytest.raises(RuntimeError, match="catalog unavailable"):
        await cache.get_or_set("k", failing, 60)

    assert cache.get("k") is None
    assert cache.size() == 0
    # A later call runs the producer again
    assert await cache.get_or_set("k", lambda: "ok", 60) == "ok"


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_producer_call() -> None:
    cache = BoundedTTLCache()
    calls = 0
    release = asyncio.Event()

    async def slow_producer() -> str:
        nonlocal calls
        calls += 1
        await release.wait()
        return "value"

    tasks = [asyncio.create_task(cache.get_or_set("k", slow_producer, 60)) for _ in range(10)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks)

    assert results == ["value"] * 10
    assert calls == 1
    assert cache.get("k") == "value"


@pytest.mark.asyncio
async def test_concurrent_waiters_see_producer_failure() -> None:
    cache = BoundedTTLCache()
    release = asyncio.Event()

    async def failing() -> str:
        await release.wait()
        raise LookupError("gone")

    tasks = [asyncio.create_task(cache.get_or_set("k", failing, 60)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(r, LookupError) for r in results)
    assert cache.size() == 0


@pytest.mark.asyncio
async def test_cancelled_producer_hands_over_to_waiting_caller() -> None:
    cache = BoundedTTLCache()
    never = asyncio.Event()

    async def slow() -> str:
        await never.wait()
        return "stale"

    async def fast() -> str:
        return "fresh"

    first = asyncio.create_task(cache.get_or_set("k", slow, 60))
    await asyncio.sleep(0)
    second = asyncio.create_task(cache.get_or_set("k", fast, 60))
    await asyncio.sleep(0)

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    assert await second == "fresh"
    assert cache.get("k") == "fresh"


def test_thread_safety_under_concurrent_sets() -> None:
    cache = BoundedTTLCache(max_size=20)
    total_keys = 200

    def _writer(idx: int) -> None:
        cache.set(f"k-{idx}", {"v": idx}, 60)

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(total_keys)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.size() <= 20
