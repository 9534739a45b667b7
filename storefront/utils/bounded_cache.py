"""Bounded in-memory TTL cache for storefront reads.

Each namespace (products, categories, carts, ...) is its own instance with
its own capacity. Expiry is lazy: an entry past its deadline is treated as
absent on read and removed by ``purge_expired`` during housekeeping, so no
per-key timers exist and re-setting a key simply replaces its deadline.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Pattern

from storefront.core.errors import ValidationAppError

logger = logging.getLogger(__name__)

# Share of capacity dropped at once when a full namespace admits a new key
EVICTION_FRACTION = 0.1

Producer = Callable[[], Any | Awaitable[Any]]

_MISSING = object()
_RETRY = object()


@dataclass
class CacheItem:
    """Container for cached values with expiration metadata."""

    value: Any
    inserted_at: float
    expires_at: float


class BoundedTTLCache:
    """Thread-safe, size-bounded TTL cache with batched FIFO eviction.

    Attributes:
        name: Namespace name, used in logs and stats.
        max_size: Maximum number of entries held at any time.
        default_ttl_seconds: TTL used when ``set`` is called without one.
    """

    def __init__(
        self,
        name: str = "cache",
        max_size: int = 100,
        default_ttl_seconds: float = 300.0,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be > 0")

        self.name = name
        self.max_size = max_size
        self.default_ttl_seconds = default_ttl_seconds
        self._store: OrderedDict[str, CacheItem] = OrderedDict()
        self._inflight: dict[str, asyncio.Future] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"BoundedTTLCache(name={self.name!r}, max_size={self.max_size}, "
            f"size={len(self._store)}, hits={self._hits}, misses={self._misses}, "
            f"evictions={self._evictions})"
        )

    def __len__(self) -> int:
        return self.size()

    @property
    def eviction_batch(self) -> int:
        return math.ceil(self.max_size * EVICTION_FRACTION)

    def get(self, key: str) -> Any | None:
        """Retrieve a cached value if it exists and is not expired.

        Args:
            key: Cache key.

        Returns:
            Cached value or None if not found/expired.
        """

        value = self._lookup(key)
        return None if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        with self._lock:
            item = self._store.get(key)
            if item is None:
                self._misses += 1
                logger.debug(
                    "cache.miss",
                    extra={"cache_name": self.name, "cache_key": key[:64], "reason": "not_found"},
                )
                return _MISSING

            if item.expires_at <= time.time():
                del self._store[key]
                self._expirations += 1
                self._misses += 1
                logger.debug(
                    "cache.miss",
                    extra={"cache_name": self.name, "cache_key": key[:64], "reason": "expired"},
                )
                return _MISSING

            self._hits += 1
            return item.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a value with a TTL, evicting the oldest entries if full.

        Overwriting an existing key refreshes its deadline and moves it to the
        newest position; it never triggers eviction.

        Args:
            key: Cache key.
            value: Value to store.
            ttl_seconds: Time-to-live; defaults to ``default_ttl_seconds``.

        Raises:
            ValueError: If ``ttl_seconds`` is not positive.
        """

        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be > 0")

        with self._lock:
            now = time.time()
            if key in self._store:
                del self._store[key]
            else:
                self._purge_expired_locked(now)
                if len(self._store) >= self.max_size:
                    self._evict_oldest_locked()
            self._store[key] = CacheItem(value=value, inserted_at=now, expires_at=now + ttl)

            logger.debug(
                "cache.set",
                extra={
                    "cache_name": self.name,
                    "cache_key": key[:64],
                    "size": len(self._store),
                    "ttl_s": ttl,
                },
            )

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if a live (non-expired) entry was present."""

        with self._lock:
            item = self._store.pop(key, None)
            return item is not None and item.expires_at > time.time()

    async def get_or_set(self, key: str, producer: Producer, ttl_seconds: float | None = None) -> Any:
        """Return the cached value for ``key``, producing and storing it on a miss.

        ``producer`` may be a plain callable or return an awaitable. It is
        only called on a miss; concurrent misses for the same key on the same
        event loop wait for the first call instead of calling it again. If
        the producer raises, nothing is stored and the error propagates to
        every waiting caller. If the producing caller is cancelled, waiting
        callers retry and one of them produces the value instead.

        Args:
            key: Cache key.
            producer: Zero-argument callable computing the value.
            ttl_seconds: TTL for the stored value.

        Returns:
            The cached or freshly produced value.
        """

        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")

        while True:
            value = self._lookup(key)
            if value is not _MISSING:
                return value

            loop = asyncio.get_running_loop()
            with self._lock:
                pending = self._inflight.get(key)
                if pending is None or pending.get_loop() is not loop:
                    pending = None
                    future = loop.create_future()
                    self._inflight[key] = future

            if pending is None:
                return await self._produce(key, producer, ttl_seconds, future)

            logger.debug("cache.inflight_join", extra={"cache_name": self.name, "cache_key": key[:64]})
            result = await asyncio.shield(pending)
            if result is not _RETRY:
                return result

    async def _produce(
        self,
        key: str,
        producer: Producer,
        ttl_seconds: float | None,
        future: asyncio.Future,
    ) -> Any:
        try:
            result = producer()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            # Only this caller was cancelled; waiters start over
            self._release_inflight(key, future)
            if not future.done():
                future.set_result(_RETRY)
            raise
        except Exception as exc:
            self._release_inflight(key, future)
            future.set_exception(exc)
            # Mark as retrieved so an unobserved failure is not reported at GC.
            future.exception()
            logger.debug(
                "cache.producer_failed",
                extra={"cache_name": self.name, "cache_key": key[:64], "error_type": type(exc).__name__},
            )
            raise

        self.set(key, result, ttl_seconds)
        self._release_inflight(key, future)
        future.set_result(result)
        return result

    def _release_inflight(self, key: str, future: asyncio.Future) -> None:
        with self._lock:
            if self._inflight.get(key) is future:
                del self._inflight[key]

    def delete_pattern(self, pattern: str | Pattern[str]) -> int:
        """Remove every entry whose key matches ``pattern`` (``re.search``).

        Args:
            pattern: Regular expression string or compiled pattern. A plain
                substring without regex metacharacters matches literally.

        Returns:
            Number of entries removed.

        Raises:
            ValidationAppError: If ``pattern`` is not a valid expression.
        """

        if isinstance(pattern, str):
            try:
                regex = re.compile(pattern)
            except re.error as exc:
                raise ValidationAppError(
                    code="invalid_cache_pattern",
                    message=f"Invalid cache key pattern: {exc}",
                    details={"pattern": pattern, "cache_name": self.name},
                ) from exc
        else:
            regex = pattern

        with self._lock:
            matched = [key for key in self._store if regex.search(key)]
            for key in matched:
                del self._store[key]

        if matched:
            logger.info(
                "cache.invalidated",
                extra={"cache_name": self.name, "pattern": regex.pattern, "removed": len(matched)},
            )
        return len(matched)

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0

    def size(self) -> int:
        """Number of live (non-expired) entries."""

        with self._lock:
            self._purge_expired_locked(time.time())
            return len(self._store)

    def purge_expired(self) -> int:
        """Remove all expired entries. Returns the count removed."""

        with self._lock:
            return self._purge_expired_locked(time.time())

    def stats(self) -> dict[str, int | float | str]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "name": self.name,
                "max_size": self.max_size,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }

    def _purge_expired_locked(self, now: float) -> int:
        expired_keys = [k for k, item in self._store.items() if item.expires_at <= now]
        for key in expired_keys:
            del self._store[key]
        self._expirations += len(expired_keys)
        return len(expired_keys)

    def _evict_oldest_locked(self) -> None:
        batch = min(self.eviction_batch, len(self._store))
        for _ in range(batch):
            # popitem(last=False) removes the oldest insertion
            self._store.popitem(last=False)
        self._evictions += batch
        logger.debug(
            "cache.evicted",
            extra={"cache_name": self.name, "evicted": batch, "max_size": self.max_size},
        )


def _format_param(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_cache_key(prefix: str, params: Mapping[str, Any] | None = None) -> str:
    """Build a deterministic cache key from a prefix and parameters.

    Parameters are sorted by name so the same logical set always maps to the
    same slot regardless of construction order. ``None`` renders as ``null``
    so it never collides with an empty string.

    Examples:
        >>> build_cache_key("product", {"b": 2, "a": 1})
        'product:a=1&b=2'
X        'categories:default'
    """

    if not params:
        return f"{prefix}:default"

    rendered = "&".join(
        f"{name}={_format_param(value)}"
        for name, value in sorted(params.items(), key=lambda kv: str(kv[0]))
    )
    return f"{prefix}:{rendered}"
