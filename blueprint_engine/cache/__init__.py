from .cache_manager import CacheStore, InMemoryCacheStore, RedisCacheStore, ResponseCache

__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "ResponseCache"
]
