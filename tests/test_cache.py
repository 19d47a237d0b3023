"""Response cache tests."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from blueprint_engine.cache.cache_manager import InMemoryCacheStore, RedisCacheStore, ResponseCache
from blueprint_engine.config import ProviderName
from blueprint_engine.models.ai import RequestSpec, ResponseEnvelope, ResponseMetadata, Usage
from blueprint_engine.reliability.errors import ErrorCode, make_error


def make_envelope(text="hello"):
    return ResponseEnvelope(
        success=True,
        text=text,
        usage=Usage(prompt_tokens=1, completion_tokens=2, total_tokens=3, cost=0.5),
        metadata=ResponseMetadata(provider=ProviderName.OPENAI, model="gpt-4", latency=0.2),
    )


@pytest.mark.asyncio
async def test_put_then_get_round_trip(clock):
    """A stored envelope comes back unchanged."""
    cache = ResponseCache(InMemoryCacheStore(clock=clock), default_ttl=60)
    envelope = make_envelope()

    assert await cache.put("k", envelope)
    assert await cache.get("k") == envelope


@pytest.mark.asyncio
async def test_entries_expire_after_ttl(clock):
    """After the TTL the entry is a miss."""
    cache = ResponseCache(InMemoryCacheStore(clock=clock), default_ttl=60)
    await cache.put("k", make_envelope())

    clock.advance(59)
    assert await cache.get("k") is not None
    clock.advance(1)
    assert await cache.get("k") is None
    assert cache.get_stats()["misses"] == 1


@pytest.mark.asyncio
async def test_failed_envelopes_are_not_cached(clock):
    """Only successful envelopes are stored."""
    cache = ResponseCache(InMemoryCacheStore(clock=clock))
    failure = ResponseEnvelope.failure(make_error(ErrorCode.AI_SERVICE_TIMEOUT))

    assert not await cache.put("k", failure)
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_disabled_cache_never_hits(clock):
    """A disabled cache stores and returns nothing."""
    cache = ResponseCache(InMemoryCacheStore(clock=clock), enabled=False)

    assert not await cache.put("k", make_envelope())
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_lru_eviction(clock):
    """The least recently used entry is evicted at capacity."""
    store = InMemoryCacheStore(max_entries=2, clock=clock)
    await store.set("a", "1", 60)
    await store.set("b", "2", 60)
    await store.get("a")
    await store.set("c", "3", 60)

    assert await store.get("a") == "1"
    assert await store.get("b") is None
    assert await store.get("c") == "3"
    assert store.evictions == 1


@pytest.mark.asyncio
async def test_expired_entries_make_room_before_eviction(clock):
    """At capacity an expired entry is dropped instead of a live one."""
    store = InMemoryCacheStore(max_entries=2, clock=clock)
    await store.set("a", "1", 60)
    await store.set("b", "2", 1)
    clock.advance(2)
    await store.set("c", "3", 60)

    assert await store.get("a") == "1"
    assert await store.get("c") == "3"
    assert store.evictions == 0


@pytest.mark.asyncio
async def test_purge_expired_removes_only_stale_entries(clock):
    """purge_expired drops expired entries and reports how many."""
    store = InMemoryCacheStore(clock=clock)
    await store.set("short", "1", 5)
    await store.set("long", "2", 60)
    clock.advance(10)

    assert store.purge_expired() == 1
    assert len(store) == 1
    assert await store.get("long") == "2"


@pytest.mark.asyncio
async def test_delete_and_clear(clock):
    """Entries can be removed individually or all at once."""
    cache = ResponseCache(InMemoryCacheStore(clock=clock))
    await cache.put("a", make_envelope())
    await cache.put("b", make_envelope())

    assert await cache.delete("a")
    assert await cache.get("a") is None
    assert await cache.clear() == 1


def test_key_generation_is_deterministic():
    """Identical requests share a key; different prompts do not."""
    request = RequestSpec(prompt="hello", temperature=0.5)

    key = ResponseCache.generate_key(request, "openai", "gpt-4")
    assert key == ResponseCache.generate_key(RequestSpec(prompt="hello", temperature=0.5), "openai", "gpt-4")
    assert key != ResponseCache.generate_key(RequestSpec(prompt="hi", temperature=0.5), "openai", "gpt-4")
    assert key != ResponseCache.generate_key(request, "anthropic", "gpt-4")


def test_explicit_cache_key_is_scoped_by_provider():
    """An explicit cache key is used as-is, prefixed by provider."""
    request = RequestSpec(prompt="hello", cache_key="greeting")

    assert ResponseCache.generate_key(request, "openai", "gpt-4") == "openai:greeting"


@pytest.mark.asyncio
async def test_redis_store_uses_setex_with_ttl():
    """The Redis store writes with SETEX and a whole-second TTL."""
    client = MagicMock()
    client.setex = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value=make_envelope().model_dump_json())
    cache = ResponseCache(RedisCacheStore(client=client, prefix="test:"), default_ttl=30.5)

    assert await cache.put("k", make_envelope())
    client.setex.assert_awaited_once()
    key, ttl, _ = client.setex.await_args.args
    assert key == "test:k"
    assert ttl == 31

    assert await cache.get("k") == make_envelope()


@pytest.mark.asyncio
async def test_redis_errors_degrade_to_misses():
    """Redis failures are logged and treated as cache misses."""
    client = MagicMock()
    client.get = AsyncMock(side_effect=ConnectionError("redis down"))
    client.setex = AsyncMock(side_effect=ConnectionError("redis down"))
    cache = ResponseCache(RedisCacheStore(client=client))

    assert await cache.get("k") is None
    assert not await cache.put("k", make_envelope())


@pytest.mark.asyncio
async def test_redis_store_without_connection_is_inert():
    """An uninitialized Redis store never touches the network."""
    store = RedisCacheStore()

    assert await store.get("k") is None
    assert not await store.set("k", "v", 10)
    assert await store.clear() == 0
