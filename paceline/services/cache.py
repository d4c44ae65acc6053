"""
Cache - In-memory key/value store with LRU eviction, TTL and stale-while-revalidate.

Features:
- LRU eviction bounded by entry count and estimated memory usage
- TTL (Time To Live) per entry, or no expiry at all
- Hit/miss statistics
- get_or_set and stale-while-revalidate read paths
- Pattern-based invalidation
"""

import asyncio
import inspect
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from paceline.settings import Settings, get_settings
from paceline.utils import estimate_size

T = TypeVar("T")

# Sentinel: use the cache's default TTL. Passing ttl=None means "never expires".
DEFAULT_TTL: Any = object()

_MB = 1024 * 1024


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    value: T
    created_at: datetime
    expires_at: datetime | None
    size: int
    hits: int = 0

    def is_expired(self) -> bool:
        """Check if entry is past its TTL."""
        if self.expires_at is None:
            return False
        return datetime.now() > self.expires_at


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for a cache instance."""

    max_size: int = 1000  # Max number of entries
    max_memory_mb: float = 50  # Max estimated memory usage
    default_ttl: timedelta = timedelta(minutes=5)

    @property
    def max_memory_bytes(self) -> float:
        return self.max_memory_mb * _MB


@dataclass
class CacheStats:
    """Cache statistics."""

    entries: int = 0
    hits: int = 0
    misses: int = 0
    memory_usage: int = 0
    evictions: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "entries": self.entries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{self.hit_rate:.2%}",
            "memory_usage": self.memory_usage,
            "evictions": self.evictions,
            "max_size": self.max_size,
        }


class Cache(Generic[T]):
    """
    Size- and time-bounded cache with LRU eviction.

    Insertion order of the underlying OrderedDict is the LRU order: the
    first key is the least recently used one.

    Usage:
        cache = Cache(CacheConfig(max_size=100, default_ttl=timedelta(minutes=1)))

        cache.set("my_key", data)
        value = cache.get("my_key")

        # Never expires
        cache.set("static", data, ttl=None)

        # Serve stale data while refreshing in the background
        value = await cache.swr("my_key", fetch_data)
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        size_estimator: Callable[[Any], int] = estimate_size,
        name: str = "cache",
        debug: bool = False,
    ):
        self.config = config or CacheConfig()
        self.name = name
        self._size_estimator = size_estimator
        self._memory: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._memory_usage = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._background: set[asyncio.Task[Any]] = set()
        self._debug = debug

    def __len__(self) -> int:
        return len(self._memory)

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        return list(self._memory.keys())

    def get(self, key: str, default: Any = None) -> T | Any:
        """
        Get value from cache.

        Returns default if the key is missing or expired.
        """
        entry = self._memory.get(key)

        if entry is None:
            self._misses += 1
            self._log(f"MISS: {key[:50]}")
            return default

        if entry.is_expired():
            self.delete(key)
            self._misses += 1
            self._log(f"EXPIRED: {key[:50]}")
            return default

        self._hits += 1
        entry.hits += 1
        self._memory.move_to_end(key)
        self._log(f"HIT: {key[:50]}")
        return entry.value

    def set(self, key: str, value: T, ttl: timedelta | None = DEFAULT_TTL) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live; None never expires, omitted uses the default
        """
        size = self._size_estimator(value)

        self.delete(key)
        self._evict(size)

        now = datetime.now()
        if ttl is DEFAULT_TTL:
            ttl = self.config.default_ttl

        self._memory[key] = CacheEntry(
            value=value,
            created_at=now,
            expires_at=None if ttl is None else now + ttl,
            size=size,
        )
        self._memory_usage += size
        self._log(f"SET: {key[:50]} ({size} bytes, TTL: {ttl})")

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        entry = self._memory.pop(key, None)
        if entry is None:
            return False
        self._memory_usage -= entry.size
        return True

    def has(self, key: str) -> bool:
        """Check if a live entry exists, without touching stats or LRU order."""
        entry = self._memory.get(key)
        if entry is None:
            return False
        if entry.is_expired():
            self.delete(key)
            return False
        return True

    def touch(self, key: str) -> bool:
        """Mark key as most recently used."""
        if key not in self._memory:
            return False
        self._memory.move_to_end(key)
        return True

    def clear(self) -> None:
        """Clear all cache entries. Statistics are kept."""
        count = len(self._memory)
        self._memory.clear()
        self._memory_usage = 0
        self._log(f"CLEAR: {count} entries removed")

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], T | Awaitable[T]],
        ttl: timedelta | None = DEFAULT_TTL,
    ) -> T:
        """Return the cached value, or compute, store and return it."""
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        value = await _call(factory)
        self.set(key, value, ttl)
        return value

    async def swr(
        self,
        key: str,
        factory: Callable[[], T | Awaitable[T]],
        ttl: timedelta | None = DEFAULT_TTL,
    ) -> T:
        """
        Stale-while-revalidate read.

        Any entry, even an expired one, is returned immediately. Expired
        entries are refreshed by a background task whose errors are
        swallowed. Without an entry the factory is awaited.
        """
        entry = self._memory.get(key)

        if entry is not None:
            if entry.is_expired():
                self._revalidate(key, factory, ttl)
            entry.hits += 1
            self._hits += 1
            self._memory.move_to_end(key)
            return entry.value

        self._misses += 1
        value = await _call(factory)
        self.set(key, value, ttl)
        return value

    def invalidate(self, pattern: str | re.Pattern[str]) -> int:
        """
        Invalidate all keys matching a pattern.

        Args:
            pattern: Substring, or compiled regex searched in each key

        Returns:
            Number of entries invalidated
        """
        if isinstance(pattern, str):
            keys_to_delete = [k for k in self._memory if pattern in k]
        else:
            keys_to_delete = [k for k in self._memory if pattern.search(k)]

        for key in keys_to_delete:
            self.delete(key)

        if keys_to_delete:
            self._log(f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'")

        return len(keys_to_delete)

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return CacheStats(
            entries=len(self._memory),
            hits=self._hits,
            misses=self._misses,
            memory_usage=self._memory_usage,
            evictions=self._evictions,
            max_size=self.config.max_size,
        )

    def _evict(self, incoming_size: int) -> None:
        """Drop expired entries, then LRU entries until the new one fits."""
        expired_keys = [k for k, v in self._memory.items() if v.is_expired()]
        for key in expired_keys:
            self.delete(key)

        budget = self.config.max_memory_bytes
        while self._memory and (
            len(self._memory) >= self.config.max_size
            or self._memory_usage > budget - incoming_size
        ):
            lru_key = next(iter(self._memory))
            self.delete(lru_key)
            self._evictions += 1
            self._log(f"EVICT: {lru_key[:50]}")

    def _revalidate(
        self,
        key: str,
        factory: Callable[[], T | Awaitable[T]],
        ttl: timedelta | None,
    ) -> None:
        async def refresh() -> None:
            value = await _call(factory)
            self.set(key, value, ttl)

        task = asyncio.create_task(refresh())
        self._background.add(task)
        task.add_done_callback(self._on_revalidated)

    def _on_revalidated(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"[{self.name}] background refresh failed: {task.exception()}")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[{self.name}] {message}")


_MISSING: Any = object()


async def _call(factory: Callable[[], Any]) -> Any:
    """Call a factory that may return a value or an awaitable."""
    result = factory()
    if inspect.isawaitable(result):
        result = await result
    return result


# Specialized caches


@dataclass
class Caches:
    """The application's cache instances."""

    api: Cache[Any] = field(default_factory=Cache)
    compute: Cache[Any] = field(default_factory=Cache)
    user_data: Cache[Any] = field(default_factory=Cache)

    def get_all_stats(self) -> dict[str, dict[str, Any]]:
        return {
            "api": self.api.get_stats().to_dict(),
            "compute": self.compute.get_stats().to_dict(),
            "user_data": self.user_data.get_stats().to_dict(),
        }


def build_caches(settings: Settings | None = None) -> Caches:
    """Build the API response, computed value and user data caches."""
    settings = settings or get_settings()
    return Caches(
        api=Cache(
            CacheConfig(
                max_size=100,
                max_memory_mb=10,
                default_ttl=timedelta(seconds=settings.api_cache_ttl),
            ),
            name="api_cache",
            debug=settings.debug,
        ),
        compute=Cache(
            CacheConfig(
                max_size=500,
                max_memory_mb=20,
                default_ttl=timedelta(minutes=5),
            ),
            name="compute_cache",
            debug=settings.debug,
        ),
        user_data=Cache(
            CacheConfig(
                max_size=50,
                max_memory_mb=5,
                default_ttl=timedelta(minutes=2),
            ),
            name="user_data_cache",
            debug=settings.debug,
        ),
    )


# Global cache instances
_global_caches: Caches | None = None


def get_caches() -> Caches:
    """Get the global cache instances, building them on first use."""
    global _global_caches
    if _global_caches is None:
        _global_caches = build_caches()
    return _global_caches


def reset_caches() -> None:
    """Drop the global cache instances."""
    global _global_caches
    _global_caches = None
