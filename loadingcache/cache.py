import itertools
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar, Union

from . import metrics
from .config import config

log = logging.getLogger("loadingcache")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

TTL = Union[int, float, timedelta]


class InvalidTTLError(ValueError):
    pass


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class Cache(ABC, Generic[K, V]):
    @abstractmethod
    def get(self, key: K) -> V:
        ...

    @abstractmethod
    def put(self, key: K, value: V) -> None:
        ...


def _ttl_seconds(ttl: Optional[TTL]) -> float:
    if ttl is None:
        ttl = config.DEFAULT_TTL_SEC
    if isinstance(ttl, timedelta):
        ttl = ttl.total_seconds()
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        raise InvalidTTLError(f"ttl must be seconds or a timedelta, got {type(ttl).__name__}")
    ttl = float(ttl)
    # nan compares false against every clock reading, so it would never expire
    if math.isnan(ttl) or ttl < 0:
        raise InvalidTTLError(f"ttl must be non-negative, got {ttl}")
    return ttl


_cache_ids = itertools.count(1)


def _default_name(loader) -> str:
    # metric label; unique per instance so two caches never share a series
    return f"{getattr(loader, '__name__', 'cache')}-{next(_cache_ids)}"


def _check_key(key) -> None:
    try:
        hash(key)
    except TypeError as exc:
        raise TypeError(f"cache key must be hashable, got {type(key).__name__}") from exc


class LoadingCache(Cache[K, V]):
    """Thread-safe TTL cache that computes missing values with ``loader``.

    Every key gets its own lock, so concurrent callers asking for the same
    cold or expired key wait for a single loader call and then read its
    result. Keys never contend with each other except for the short lookup
    in the lock registry.

    The lock registry only grows: dropping a key's lock while another thread
    still holds a reference to it would let two loaders run for that key.
    """

    def __init__(
        self,
        loader: Callable[[K], V],
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
        self._data: Dict[K, CacheEntry[V]] = {}
        self._locks: Dict[K, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _now(self) -> float:
        return self._clock()

    def _key_lock(self, key: K) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is not None:
                return lock
            lock = self._locks[key] = threading.Lock()
            size = len(self._locks)
        log.debug("key lock created", extra={"cache": self.name})
        metrics.set_key_locks(self.name, size)
        return lock

    def get(self, key: K) -> V:
        _check_key(key)
        with self._key_lock(key):
            entry = self._data.get(key)
            if entry is not None and not entry.expired(self._now()):
                metrics.record_hit(self.name)
                return entry.value
            log.debug("cache expired" if entry else "cache miss", extra={"cache": self.name})
            metrics.record_miss(self.name)
            value = self._load(key)
            self._data[key] = CacheEntry(value, self._now() + self.ttl)
            return value

    def _load(self, key: K) -> V:
        start = time.perf_counter()
        try:
            value = self.loader(key)
        except Exception:
            metrics.record_load(self.name, time.perf_counter() - start, failed=True)
            log.warning("loader failed", exc_info=True, extra={"cache": self.name})
            raise
        metrics.record_load(self.name, time.perf_counter() - start)
        return value

    def put(self, key: K, value: V) -> None:
        _check_key(key)
        with self._key_lock(key):
            self._data[key] = CacheEntry(value, self._now() + self.ttl)
        metrics.record_put(self.name)

    def __getitem__(self, key: K) -> V:
        return self.get(key)

    def __setitem__(self, key: K, value: V) -> None:
        self.put(key, value)

    def __repr__(self) -> str:
        return f"LoadingCache(name={self.name!r}, ttl={self.ttl})"


def new_loading_cache(
    loader: Callable[[K], V],
    ttl: Optional[TTL] = None,
    *,
    name: Optional[str] = None,
    clock: Optional[Callable[[], float]] = None,
) -> LoadingCache[K, V]:
    return LoadingCache(loader, ttl, name=name, clock=clock)
