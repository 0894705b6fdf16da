"""Tests for the TTL cache."""

import pytest

from story_video.services.catalog_cache import TTLCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache(default_ttl=60, clock=clock)


def test_get_before_and_after_expiry(cache, clock):
    cache.set("models", ["a"])

    clock.now += 60
    assert cache.get("models") == ["a"]

    clock.now += 0.5
    assert cache.get("models") is None
    # Expired read removed the entry
    assert cache.stats()["size"] == 0


def test_per_entry_ttl(cache, clock):
    cache.set("short", 1, ttl=5)
    cache.set("long", 2)

    clock.now += 10

    assert cache.has("short") is False
    assert cache.has("long") is True


def test_age(cache, clock):
    cache.set("k", "v")
    clock.now += 12

    assert cache.age("k") == 12
    assert cache.age("missing") is None


def test_invalidate_one_and_all(cache):
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    assert cache.stats()["keys"] == ["b"]

    cache.invalidate()
    assert cache.stats() == {"size": 0, "keys": []}


def test_cleanup_sweeps_expired(cache, clock):
    cache.set("a", 1, ttl=1)
    cache.set("b", 2, ttl=100)
    clock.now += 50

    assert cache.cleanup() == 1
    assert cache.stats()["keys"] == ["b"]
