"""Named cache namespaces and storefront cache helpers.

The registry is created once at startup (see ``storefront.core.services``)
and handed to routes through ``app.state``; there are no module-level cache
instances.
"""

from __future__ import annotations

import functools
import json
import logging
import re
import threading
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from storefront.core.config import CacheSettings
from storefront.utils.bounded_cache import BoundedTTLCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

# TTLs in seconds per kind of storefront data
CACHE_DURATIONS: dict[str, float] = {
    "products": 10 * 60,
    "single_product": 15 * 60,
    "categories": 30 * 60,
    "cart": 5 * 60,
    "user": 5 * 60,
    "static_pages": 60 * 60,
}

PRODUCT_LIST_PREFIX = "products"
PRODUCT_DETAIL_PREFIX = "product"

# max-age values for HTTP Cache-Control headers
_HTTP_MAX_AGE: dict[str, int] = {
    "products": 600,
    "categories": 1800,
    "static_pages": 3600,
    "static_assets": 86400,
}


class CacheRegistry:
    """Owns the named cache namespaces of one application instance."""

    def __init__(
        self,
        sizes: Mapping[str, int] | None = None,
        *,
        default_max_size: int = 100,
        default_ttl_seconds: float = 300.0,
    ) -> None:
        self._default_max_size = default_max_size
        self._default_ttl_seconds = default_ttl_seconds
        self._lock = threading.Lock()
        self._caches: dict[str, BoundedTTLCache] = {}
        for name, max_size in (sizes or {}).items():
            self._caches[name] = self._build(name, max_size)

    @classmethod
    def from_settings(cls, cache_settings: CacheSettings) -> "CacheRegistry":
        return cls(
            {
                "products": cache_settings.products_max_size,
                "categories": cache_settings.categories_max_size,
                "users": cache_settings.users_max_size,
                "cart": cache_settings.cart_max_size,
                "static": cache_settings.static_max_size,
            },
            default_max_size=cache_settings.default_max_size,
            default_ttl_seconds=cache_settings.default_ttl_seconds,
        )

    def _build(self, name: str, max_size: int) -> BoundedTTLCache:
        return BoundedTTLCache(
            name=name,
            max_size=max_size,
            default_ttl_seconds=self._default_ttl_seconds,
        )

    def named_cache(self, name: str) -> BoundedTTLCache:
        """Return the namespace called ``name``, creating it on first use."""
        with self._lock:
            cache = self._caches.get(name)
            if cache is None:
                cache = self._build(name, self._default_max_size)
                self._caches[name] = cache
                logger.info(
                    "cache.namespace_created",
                    extra={"cache_name": name, "max_size": self._default_max_size},
                )
            return cache

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._caches)

    def purge_expired(self) -> int:
        with self._lock:
            caches = list(self._caches.values())
        return sum(cache.purge_expired() for cache in caches)

    def clear_all(self) -> None:
        with self._lock:
            caches = list(self._caches.values())
        for cache in caches:
            cache.clear()

    def stats(self) -> dict[str, dict[str, int | float | str]]:
        with self._lock:
            caches = dict(self._caches)
        return {name: cache.stats() for name, cache in sorted(caches.items())}


def get_cache_headers(resource_type: str) -> dict[str, str]:
    """Build a Cache-Control header for a resource type.

    Unknown types use the static pages duration.

    Examples:
        >>> get_cache_headers("products")
        {'Cache-Control': 'max-age=600, stale-while-revalidate=300'}
    """
    max_age = _HTTP_MAX_AGE.get(resource_type, _HTTP_MAX_AGE["static_pages"])
    return {
        "Cache-Control": f"max-age={max_age}, stale-while-revalidate={max_age // 2}",
    }


def cached_function(
    fn: Callable[..., Awaitable[T]],
    cache: BoundedTTLCache,
    ttl_seconds: float = CACHE_DURATIONS["products"],
) -> Callable[..., Awaitable[T]]:
    """Memoize an async function in ``cache`` keyed by its arguments.

    Arguments must be JSON-serializable (``str()`` is used as a fallback).
    """

    prefix = getattr(fn, "__qualname__", "fn")

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        key = f"{prefix}:" + json.dumps([args, kwargs], default=str, sort_keys=True)
        return await cache.get_or_set(key, lambda: fn(*args, **kwargs), ttl_seconds)

    return wrapper


def _value_pattern(value: str) -> str:
    # Matches the value as a whole key segment produced by build_cache_key
    return rf"(?:^|[:=&]){re.escape(str(value))}(?:&|$)"


def invalidate_product(caches: CacheRegistry, product_id: str) -> int:
    """Drop cached entries keyed by ``product_id`` and every product listing.

    Listings embed product data, so they go stale with any single update.
    """
    products = caches.named_cache("products")
    removed = products.delete_pattern(_value_pattern(product_id))
    removed += products.delete_pattern(rf"^{PRODUCT_LIST_PREFIX}:")
    logger.info(
        "cache.product_invalidated",
        extra={"product_id": str(product_id), "removed": removed},
    )
    return removed


def invalidate_user(caches: CacheRegistry, user_id: str) -> int:
    """Drop cached profile and cart entries belonging to ``user_id``."""
    pattern = _value_pattern(user_id)
    removed = caches.named_cache("users").delete_pattern(pattern)
    removed += caches.named_cache("cart").delete_pattern(pattern)
    logger.info(
        "cache.user_invalidated",
        extra={"user_id_length": len(str(user_id)), "removed": removed},
    )
    return removed
