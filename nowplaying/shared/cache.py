"""Short-lived cache for provider display data.

Fresh values expire after *ttl* seconds. The last value seen for each key is
kept in a bounded LRU so a failing provider call can still be answered.
Credentials never go through here: they are always read from the store.
"""

import asyncio
import functools
import logging
import time
import weakref
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from cachetools import LRUCache, TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Returned by lookups that find nothing; a cached None is a real value
MISSING = object()

T = TypeVar("T")


class AsyncTTLCache:
    def __init__(
        self,
        maxsize: int = 128,
        ttl: float = 60.0,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self.last_known: LRUCache = LRUCache(maxsize=maxsize)
        # One loader per key at a time; a lock disappears once nobody waits on it
        self._loading: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def get(self, key: str) -> Any:
        return self.fresh.get(key, MISSING)

    def get_stale(self, key: str) -> Any:
        return self.last_known.get(key, MISSING)

    def set(self, key: str, value: Any) -> None:
        self.fresh[key] = value
        self.last_known[key] = value

    def forget(self, key: str) -> None:
        self.fresh.pop(key, None)
        self.last_known.pop(key, None)

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._loading.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._loading[key] = lock
        return lock

    async def load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        *,
        attempts: int = 1,
        retry_delay: float = 0.5,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> T:
        """Return the fresh value for *key*, calling *loader* on a miss.

        Concurrent misses for one key share a single load. When every attempt
        fails with an error in *retry_on*, the last-known value is returned if
        there is one; otherwise the last error is raised.
        """
        value = self.get(key)
        if value is not MISSING:
            return value

        async with self._lock(key):
            value = self.get(key)
            if value is not MISSING:
                return value

            for attempt in range(1, attempts + 1):
                try:
                    value = await loader()
                except retry_on as exc:
                    error = exc
                    if attempt < attempts:
                        logger.warning(
                            "Load %d/%d for %s failed: %s",
                            attempt,
                            attempts,
                            key,
                            type(exc).__name__,
                        )
                        await asyncio.sleep(retry_delay * attempt)
                    continue
                self.set(key, value)
                return value

            stale = self.get_stale(key)
            if stale is MISSING:
                raise error
            logger.warning("Serving last known value for %s (%s)", key, type(error).__name__)
            return stale


def cached(
    cache: AsyncTTLCache,
    key_func: Callable[..., str],
    *,
    retry: int = 1,
    retry_delay: float = 0.5,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
):
    """Decorate an async function so its results go through :meth:`AsyncTTLCache.load`.

    ``key_func`` receives the same arguments as the decorated function.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await cache.load(
                key_func(*args, **kwargs),
                lambda: func(*args, **kwargs),
                attempts=retry,
                retry_delay=retry_delay,
                retry_on=retry_on,
            )

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper

    return decorator
