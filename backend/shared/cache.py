"""In-process TTL cache with a last-known-good tier.

Used for LINE display names: lookups cost API quota, so fresh names are kept
for a day, and an expired name is still better than the generic fallback
when the profile API is failing.
"""

import asyncio
import functools
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Distinguishes "not cached" from a cached None
MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """Two-tier cache.

    ``_cache`` holds fresh values and expires them after *ttl* seconds.
    ``_stale`` is an LRU of last-known-good values bounded by *maxsize*; it is
    read only after the upstream lookup has failed.
    """

    def __init__(
        self,
        maxsize: int = 1000,
        ttl: float = 86400.0,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._maxsize = maxsize
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._stale: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            if len(self._locks) > self._maxsize * 2:
                live = set(self._stale)
                for k in list(self._locks):
                    if k not in live and k not in self._cache:
                        del self._locks[k]
        return self._locks[key]

    def get(self, key: str) -> Any:
        """Return the fresh value or ``MISSING``."""
        return self._cache.get(key, MISSING)

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = value
        self._stale[key] = value
        self._stale.move_to_end(key)
        while len(self._stale) > self._maxsize:
            self._stale.popitem(last=False)

    def sweep(self) -> None:
        """Drop expired fresh entries now instead of on next access."""
        self._cache.expire()

    def get_stale(self, key: str) -> Any:
        """Return the last-known-good value or ``MISSING``."""
        value = self._stale.get(key, MISSING)
        if value is not MISSING:
            self._stale.move_to_end(key)
        return value


def cached(cache: AsyncTTLCache, key_func: Callable[..., str]):
    """Cache the result of an async lookup.

    *key_func* receives the decorated function's arguments and returns the
    cache key. Concurrent misses on one key share a single upstream call.
    When the call fails the stale tier is consulted; if it has nothing, the
    exception propagates.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            cache_key = key_func(*args, **kwargs)

            result = cache.get(cache_key)
            if result is not MISSING:
                return result

            async with cache._get_lock(cache_key):
                result = cache.get(cache_key)
                if result is not MISSING:
                    return result

                try:
                    result = await func(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    stale = cache.get_stale(cache_key)
                    if stale is MISSING:
                        raise
                    logger.warning(
                        "Returning stale value for %s (%s)", cache_key, type(exc).__name__
                    )
                    return stale
                cache.set(cache_key, result)
                return result

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
