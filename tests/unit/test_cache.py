"""Tests for the cache port and cache key derivation."""

import pytest

from flowforge.cache import InMemoryCache, build_cache_key
from flowforge.contracts import CacheOptions, StepSpec


def test_cache_key_uses_only_declared_fields():
    step = StepSpec(id="fetch", type="single_call", parameters=["account_id"])
    key = build_cache_key("wf", step, {"account_id": "acc1", "token": "secret"})
    assert key == "workflow:wf:fetch:account_id=acc1"
    assert "secret" not in key
    # Unrelated context changes do not change the key
    assert key == build_cache_key("wf", step, {"account_id": "acc1", "token": "other"})


def test_cache_key_from_key_fields_is_sorted_and_defaulted():
    step = StepSpec(
        id="fetch",
        type="single_call",
        cache=CacheOptions(key_fields=["z", "a"]),
    )
    key = build_cache_key("wf", step, {"a": 1})
    assert key == "workflow:wf:fetch:a=1:z=default"


def test_cache_key_from_pattern():
    step = StepSpec(
        id="summary",
        type="computation",
        cache=CacheOptions(key_pattern="summary:{user_id}:{start_date}"),
    )
    key = build_cache_key("wf", step, {"user_id": "u1", "unrelated": "x"})
    assert key == "summary:u1:default"
    assert build_cache_key("wf", step, {"user_id": "u1"}, suffix="acc1") == "summary:u1:default:acc1"


@pytest.mark.asyncio
async def test_in_memory_cache_roundtrip_and_classification():
    cache = InMemoryCache()
    assert await cache.get("missing") is None
    await cache.set("k", {"v": 1}, ttl=60, classification="sensitive")
    assert await cache.get("k") == {"v": 1}
    assert cache.classification_of("k") == "sensitive"
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_in_memory_cache_expires_entries():
    cache = InMemoryCache()
    await cache.set("k", "v", ttl=0)
    assert await cache.get("k") is None
    assert len(cache) == 0
