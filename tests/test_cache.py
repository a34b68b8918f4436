"""Tests for the TTL cache."""

import pytest

from coherence_cli.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    """Tests for expiry, loading and eviction."""

    def test_get_and_set(self):
        cache = TTLCache(ttl=10)
        cache.set("k", "v")

        assert cache.get("k") == "v"
        assert cache.get("missing") is None
        assert (cache.hits, cache.misses) == (1, 1)

    def test_entries_expire(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("k", "v")

        clock.now += 9.9
        assert cache.get("k") == "v"
        clock.now += 0.1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_get_or_load_calls_loader_once(self):
        cache = TTLCache(ttl=10)
        calls = []

        def loader():
            calls.append(1)
            return "loaded"

        assert cache.get_or_load("k", loader) == "loaded"
        assert cache.get_or_load("k", loader) == "loaded"
        assert len(calls) == 1

    def test_eviction_prefers_expired_then_soonest(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, max_entries=2, clock=clock)
        cache.set("a", 1)
        clock.now += 1
        cache.set("b", 2)
        clock.now += 1
        cache.set("c", 3)

        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_invalidate_and_clear(self):
        cache = TTLCache(ttl=10)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            TTLCache(ttl=0)
