"""
Response Cache - content-addressed memoization of prompt -> response pairs
"""

import hashlib
import json
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from ..config import CachingConfig
from ..models.ai import RequestSpec, ResponseEnvelope

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """Key-value store holding serialized envelopes with a TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: float) -> bool:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    async def clear(self) -> int:
        pass


class InMemoryCacheStore(CacheStore):
    """Process-local LRU store.

    Expired entries are dropped on lookup, and before any live entry is
    evicted to make room.
    """

    def __init__(self, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.evictions = 0

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None

            self._entries.move_to_end(key)
            return value

    async def set(self, key: str, value: str, ttl: float) -> bool:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)
            self._entries.move_to_end(key)

            if len(self._entries) > self.max_entries:
                self._drop_expired()

            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Evicted least recently used cache entry {evicted}")
            return True

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def _drop_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def purge_expired(self) -> int:
        with self._lock:
            return self._drop_expired()

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore(CacheStore):
    """Shared store backed by Redis. Redis failures degrade to cache misses."""

    def __init__(self, redis_url: str = "redis://localhost:6379", prefix: str = "blueprint:cache:", client=None):
        self.redis_url = redis_url
        self.prefix = prefix
        self.redis_client = client
        self._connected = client is not None

    async def initialize(self):
        """Initialize Redis connection"""
        try:
            self.redis_client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                max_connections=10
            )
            await self.redis_client.ping()
            self._connected = True
            logger.info("Redis cache store initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Redis cache store: {e}")
            self._connected = False

    async def get(self, key: str) -> Optional[str]:
        if not self._connected:
            return None

        try:
            return await self.redis_client.get(self.prefix + key)
        except Exception as e:
            logger.error(f"Cache get error: {e}")
            return None

    async def set(self, key: str, value: str, ttl: float) -> bool:
        if not self._connected:
            return False

        try:
            await self.redis_client.setex(self.prefix + key, max(1, math.ceil(ttl)), value)
            return True
        except Exception as e:
            logger.error(f"Cache set error: {e}")
            return False

    async def delete(self, key: str) -> bool:
        if not self._connected:
            return False

        try:
            return bool(await self.redis_client.delete(self.prefix + key))
        except Exception as e:
            logger.error(f"Cache delete error: {e}")
            return False

    async def clear(self) -> int:
        if not self._connected:
            return 0

        try:
            keys = [key async for key in self.redis_client.scan_iter(match=f"{self.prefix}*")]
            if keys:
                return await self.redis_client.delete(*keys)
            return 0
        except Exception as e:
            logger.error(f"Cache clear error: {e}")
            return 0

    async def close(self):
        """Close Redis connection"""
        if self.redis_client:
            await self.redis_client.close()
            self._connected = False


class ResponseCache:
    """Caches successful envelopes. Failures are never stored."""

    def __init__(self, store: Optional[CacheStore] = None, default_ttl: float = 3600.0, enabled: bool = True):
        self.store = store or InMemoryCacheStore()
        self.default_ttl = default_ttl
        self.enabled = enabled
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_config(cls, config: CachingConfig, clock: Callable[[], float] = time.monotonic) -> "ResponseCache":
        if config.backend == "redis":
            store: CacheStore = RedisCacheStore(config.redis_url)
        else:
            store = InMemoryCacheStore(max_entries=config.max_entries, clock=clock)
        return cls(store=store, default_ttl=config.ttl, enabled=config.enabled)

    async def get(self, key: str) -> Optional[ResponseEnvelope]:
        if not self.enabled:
            return None

        raw = await self.store.get(key)
        if raw is None:
            self.misses += 1
            return None

        try:
            envelope = ResponseEnvelope.model_validate_json(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            await self.store.delete(key)
            self.misses += 1
            return None

        self.hits += 1
        return envelope

    async def put(self, key: str, envelope: ResponseEnvelope, ttl: Optional[float] = None) -> bool:
        if not self.enabled or not envelope.success:
            return False
        return await self.store.set(key, envelope.model_dump_json(), ttl or self.default_ttl)

    async def delete(self, key: str) -> bool:
        return await self.store.delete(key)

    async def clear(self) -> int:
        return await self.store.clear()

    def get_stats(self) -> Dict[str, float]:
        lookups = self.hits + self.misses
        return {
            "enabled": self.enabled,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }

    @staticmethod
    def generate_key(request: RequestSpec, provider: str, model: str) -> str:
        """Deterministic key over everything that shapes the completion."""
        if request.cache_key:
            return f"{provider}:{request.cache_key}"

        key_data = json.dumps(
            {
                "provider": provider,
                "model": model,
                "prompt": request.prompt,
                "system_prompt": request.system_prompt,
                "temperature": request.temperature,
            },
            sort_keys=True
        )
        return hashlib.sha256(key_data.encode()).hexdigest()
