from .cache import Cache, CacheEntry, InvalidTTLError, LoadingCache, new_loading_cache
from .aio import AsyncLoadingCache, new_async_loading_cache

__all__ = [
    "Cache",
    "CacheEntry",
    "InvalidTTLError",
    "LoadingCache",
    "new_loading_cache",
    "AsyncLoadingCache",
    "new_async_loading_cache",
]
