"""Tests for the reference data cache."""

from vehicle_tax.cache import ReferenceCache, cache_from_settings
from vehicle_tax.config import EngineSettings


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_get_and_set():
    cache = ReferenceCache(ttl_seconds=10)
    cache.set("k", 1)
    assert cache.get("k") == 1
    assert cache.get("missing", "default") == "default"
    assert (cache.hits, cache.misses) == (1, 1)


def test_entries_expire():
    clock = FakeClock()
    cache = ReferenceCache(ttl_seconds=10, clock=clock)
    cache.set("k", 1)
    clock.now = 9.9
    assert cache.get("k") == 1
    clock.now = 10.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_least_recently_used_evicted():
    cache = ReferenceCache(ttl_seconds=10, max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_zero_ttl_stores_nothing():
    cache = ReferenceCache(ttl_seconds=0)
    cache.set("k", 1)
    assert len(cache) == 0


def test_get_or_load_loads_once():
    calls = []
    cache = ReferenceCache(ttl_seconds=10)

    def loader():
        calls.append(1)
        return "value"

    assert cache.get_or_load("k", loader) == "value"
    assert cache.get_or_load("k", loader) == "value"
    assert len(calls) == 1


def test_cached_none_is_not_reloaded():
    calls = []
    cache = ReferenceCache(ttl_seconds=10)
    cache.get_or_load("k", lambda: calls.append(1))
    cache.get_or_load("k", lambda: calls.append(1))
    assert len(calls) == 1


def test_invalidate_and_clear():
    cache = ReferenceCache(ttl_seconds=10)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    cache.clear()
    assert len(cache) == 0


def test_cache_from_settings():
    assert cache_from_settings(EngineSettings(reference_cache_ttl_seconds=0)) is None
    cache = cache_from_settings(
        EngineSettings(reference_cache_ttl_seconds=30, reference_cache_max_entries=5)
    )
    assert cache.ttl_seconds == 30
    assert cache.max_entries == 5
