import pytest

from framesnap.cache import FetchCache


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_first_write_wins():
    cache = FetchCache()
    assert cache.put("k", "first") == "first"
    assert cache.put("k", "second") == "first"
    assert cache.get("k") == "first"


def test_unbounded_cache_keeps_everything():
    cache = FetchCache()
    for index in range(100):
        cache.put(str(index), "v")
    assert len(cache) == 100


def test_max_entries_evicts_least_recently_used():
    cache = FetchCache(max_entries=2)
    cache.put("a", "1")
    cache.put("b", "2")
    assert cache.get("a") == "1"
    cache.put("c", "3")
    assert "b" not in cache
    assert "a" in cache and "c" in cache


def test_ttl_expires_entries():
    clock = Clock()
    cache = FetchCache(ttl=10, clock=clock)
    cache.put("a", "1")
    clock.now = 5
    assert cache.get("a") == "1"
    clock.now = 11
    assert cache.get("a") is None
    assert cache.put("a", "2") == "2"


def test_rejects_non_positive_bound():
    with pytest.raises(ValueError):
        FetchCache(max_entries=0)
