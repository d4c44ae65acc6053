"""
Memoization helpers backed by Cache.
"""

import functools
import json
from datetime import timedelta
from typing import Any, Awaitable, Callable, TypeVar

from paceline.services.cache import DEFAULT_TTL, Cache
from paceline.services.deduplicator import RequestDeduplicator

R = TypeVar("R")

_MISSING: Any = object()


def _default_key(*args: Any) -> str:
    return json.dumps(args, separators=(",", ":"), default=str)


def memoize(
    fn: Callable[..., R],
    cache: Cache[R] | None = None,
    key_fn: Callable[..., str] | None = None,
    ttl: timedelta | None = DEFAULT_TTL,
) -> Callable[..., R]:
    """
    Wrap a function so results are cached by argument key.

    The default key is the compact JSON encoding of the positional args.
    """
    store: Cache[R] = cache if cache is not None else Cache()
    make_key = key_fn or _default_key

    @functools.wraps(fn)
    def wrapper(*args: Any) -> R:
        key = make_key(*args)
        cached = store.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        result = fn(*args)
        store.set(key, result, ttl)
        return result

    wrapper.cache = store  # type: ignore[attr-defined]
    return wrapper


def memoize_async(
    fn: Callable[..., Awaitable[R]],
    cache: Cache[R] | None = None,
    key_fn: Callable[..., str] | None = None,
    ttl: timedelta | None = DEFAULT_TTL,
) -> Callable[..., Awaitable[R]]:
    """
    Async variant of memoize.

    Concurrent calls with the same key share one invocation of fn. Failed
    calls are not cached.
    """
    store: Cache[R] = cache if cache is not None else Cache()
    make_key = key_fn or _default_key
    in_flight = RequestDeduplicator()

    async def compute(key: str, args: tuple[Any, ...]) -> R:
        result = await fn(*args)
        store.set(key, result, ttl)
        return result

    @functools.wraps(fn)
    async def wrapper(*args: Any) -> R:
        key = make_key(*args)
        cached = store.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        return await in_flight.dedupe(key, lambda: compute(key, args))

    wrapper.cache = store  # type: ignore[attr-defined]
    return wrapper
