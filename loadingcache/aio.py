import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Union

from . import metrics
from .cache import TTL, CacheEntry, K, V, _check_key, _default_name, _ttl_seconds

log = logging.getLogger("loadingcache")

AsyncLoader = Callable[[K], Union[V, Awaitable[V]]]


class AsyncLoadingCache(Generic[K, V]):
    """asyncio flavour of LoadingCache.

    Same lock discipline with asyncio locks: the registry guard covers only
    the lock lookup, the key lock covers the lookup, the loader and the write.
    ``loader`` may be a coroutine function or a plain callable.
    """

    def __init__(
        self,
        loader: AsyncLoader,
        ttl: Optional[TTL] = None,
        name: Optional[str] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        if not callable(loader):
            raise TypeError("loader must be callable")
        self.loader = loader
        self.ttl = _ttl_seconds(ttl)
        self.name = name or _default_name(loader)
        self._clock = clock or time.monotonic
        self._data: Dict[Any, CacheEntry] = {}
        self._locks: Dict[Any, asyncio.Lock] = {}
        self._global_lock = asyncio.Lock()

    def _now(self) -> float:
        return self._clock()

    async def _key_lock(self, key: K) -> asyncio.Lock:
        async with self._global_lock:
            lock = self._locks.get(key)
            if lock is not None:
                return lock
            lock = self._locks[key] = asyncio.Lock()
            size = len(self._locks)
        log.debug("key lock created", extra={"cache": self.name})
        metrics.set_key_locks(self.name, size)
        return lock

    async def get(self, key: K) -> V:
        _check_key(key)
        lock = await self._key_lock(key)
        async with lock:
            entry = self._data.get(key)
            if entry is not None and not entry.expired(self._now()):
                metrics.record_hit(self.name)
                return entry.value
            log.debug("cache expired" if entry else "cache miss", extra={"cache": self.name})
            metrics.record_miss(self.name)
            value = await self._load(key)
            self._data[key] = CacheEntry(value, self._now() + self.ttl)
            return value

    async def _load(self, key: K) -> V:
        start = time.perf_counter()
        try:
            value = self.loader(key)
            if inspect.isawaitable(value):
                value = await value
        except Exception:
            metrics.record_load(self.name, time.perf_counter() - start, failed=True)
            log.warning("loader failed", exc_info=True, extra={"cache": self.name})
            raise
        metrics.record_load(self.name, time.perf_counter() - start)
        return value

    async def put(self, key: K, value: V) -> None:
        _check_key(key)
        lock = await self._key_lock(key)
        async with lock:
            self._data[key] = CacheEntry(value, self._now() + self.ttl)
        metrics.record_put(self.name)

    def __repr__(self) -> str:
        return f"AsyncLoadingCache(name={self.name!r}, ttl={self.ttl})"


def new_async_loading_cache(
    loader: AsyncLoader,
    ttl: Optional[TTL] = None,
    *,
    name: Optional[str] = None,
    clock: Optional[Callable[[], float]] = None,
) -> AsyncLoadingCache:
    return AsyncLoadingCache(loader, ttl, name=name, clock=clock)
