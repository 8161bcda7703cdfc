"""Tests for the TTL result cache."""
from enum import Enum

import pytest

from toolgate.resilience.result_cache import (
    CACHE_TTL_CONFIG,
    ResultCache,
    generate_cache_key,
    get_result_cache,
    is_cacheable_result,
    normalize_params,
    set_result_cache,
    ttl_for_key,
)
from toolgate.tools.models import ExecutionResult


class Color(Enum):
    RED = "red"


class Producer:
    """Async producer that counts its invocations."""

    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


class TestCacheKeys:
    """Keys are stable, versioned and order-independent."""

    def test_field_order_ignored(self):
        a = generate_cache_key("npm-exec", {"command": "view", "args": ["left-pad"]})
        b = generate_cache_key("npm-exec", {"args": ["left-pad"], "command": "view"})
        assert a == b

    def test_key_format(self):
        key = generate_cache_key("gh-exec", {"command": "search"})
        prefix, digest = key.split(":")
        assert prefix == "v1-gh-exec"
        assert len(digest) == 64

    def test_argument_order_matters(self):
        a = generate_cache_key("npm-exec", {"args": ["a", "b"]})
        b = generate_cache_key("npm-exec", {"args": ["b", "a"]})
        assert a != b

    def test_prefix_matters(self):
        assert generate_cache_key("npm-exec", {}) != generate_cache_key("gh-exec", {})

    def test_normalize(self):
        assert normalize_params({"t": (1, 2), "s": {"b", "a"}, "e": Color.RED}) == {
            "t": [1, 2], "s": ["a", "b"], "e": "red",
        }

    def test_ttl_by_prefix(self):
        assert ttl_for_key(generate_cache_key("npm-view", {})) == 14400
        assert ttl_for_key(generate_cache_key("npm-exec", {})) == 7200
        assert ttl_for_key(generate_cache_key("gh-exec", {})) == 1800
        assert ttl_for_key(generate_cache_key("other", {})) == CACHE_TTL_CONFIG["default"]
        assert ttl_for_key("not-a-versioned-key") == 86400


class TestWithCache:
    """Memoization through with_cache()."""

    @pytest.mark.asyncio
    async def test_hit_skips_producer(self, cache):
        producer = Producer(ExecutionResult.success({"version": "1.3.0"}))
        first = await cache.with_cache("v1-npm-exec:k", producer)
        second = await cache.with_cache("v1-npm-exec:k", producer)
        assert producer.calls == 1
        assert second is first

    @pytest.mark.asyncio
    async def test_errors_not_cached(self, cache):
        producer = Producer(ExecutionResult.failure("boom", "ProcessError"))
        await cache.with_cache("v1-npm-exec:k", producer)
        await cache.with_cache("v1-npm-exec:k", producer)
        assert producer.calls == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self, cache, clock):
        producer = Producer(ExecutionResult.success("x"))
        key = generate_cache_key("gh-exec", {"q": 1})
        await cache.with_cache(key, producer)

        clock.advance(1799)
        await cache.with_cache(key, producer)
        assert producer.calls == 1

        clock.advance(1)
        await cache.with_cache(key, producer)
        assert producer.calls == 2

    @pytest.mark.asyncio
    async def test_explicit_ttl(self, cache, clock):
        producer = Producer("x")
        await cache.with_cache("k", producer, ttl=5)
        clock.advance(5)
        await cache.with_cache("k", producer, ttl=5)
        assert producer.calls == 2

    @pytest.mark.asyncio
    async def test_skip_cache(self, cache):
        producer = Producer("x")
        await cache.with_cache("k", producer, skip_cache=True)
        await cache.with_cache("k", producer, skip_cache=True)
        assert producer.calls == 2
        assert "k" not in cache

    @pytest.mark.asyncio
    async def test_force_refresh_replaces_entry(self, cache):
        await cache.with_cache("k", Producer("old"))
        refreshed = await cache.with_cache("k", Producer("new"), force_refresh=True)
        assert refreshed == "new"
        assert cache.get("k") == "new"

    @pytest.mark.asyncio
    async def test_custom_predicate(self, cache):
        producer = Producer({"status": "pending"})
        await cache.with_cache("k", producer, should_cache=lambda r: r["status"] == "done")
        assert "k" not in cache

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        producer = Producer("x")
        await cache.with_cache("k", producer)
        await cache.with_cache("k", producer)
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["total_keys"] == 1
        assert stats["hit_rate"] == 0.5


class TestExpiry:
    """Lazy expiry and periodic sweeps."""

    def test_lazy_expiry_on_read(self, cache, clock):
        cache.set("k", "v", ttl=10)
        clock.advance(10)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_sweep_runs_after_check_period(self, cache, clock):
        cache.set("a", 1, ttl=10)
        cache.set("b", 2, ttl=1000)
        clock.advance(59)
        cache.get("b")
        assert len(cache) == 2

        clock.advance(1)
        cache.get("b")
        assert len(cache) == 1
        assert cache.keys() == ["b"]

    def test_explicit_sweep(self, cache, clock):
        cache.set("a", 1, ttl=1)
        cache.set("b", 2, ttl=1)
        clock.advance(2)
        assert cache.sweep() == 2

    def test_clear_and_delete(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.delete("a")
        assert not cache.delete("a")
        cache.clear()
        assert len(cache) == 0
        assert cache.get_stats()["sets"] == 0


class TestMemoize:
    """Decorator form."""

    @pytest.mark.asyncio
    async def test_memoize_by_arguments(self, cache):
        calls = []

        @cache.memoize("npm-view")
        async def view(name, field=None):
            calls.append((name, field))
            return {"name": name, "field": field}

        assert await view("left-pad") == {"name": "left-pad", "field": None}
        await view("left-pad")
        await view("left-pad", field="version")
        assert calls == [("left-pad", None), ("left-pad", "version")]
        assert view.__name__ == "view"


def test_is_cacheable_result():
    assert is_cacheable_result(ExecutionResult.success(1))
    assert not is_cacheable_result(ExecutionResult.failure("x", "Timeout"))
    assert not is_cacheable_result({"isError": True})
    assert is_cacheable_result("plain")


def test_default_cache_accessors():
    custom = ResultCache()
    set_result_cache(custom)
    try:
        assert get_result_cache() is custom
    finally:
        set_result_cache(None)
    assert isinstance(get_result_cache(), ResultCache)
    set_result_cache(None)
