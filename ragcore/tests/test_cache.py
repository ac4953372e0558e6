import pytest

from ragcore.core.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(max_size=10, default_ttl=60, clock=clock)
    cache.set("What is RAG?", "owner-1", [1.0])

    clock.now = 59
    assert cache.get("what is  rag?", "owner-1") == [1.0]
    clock.now = 61
    assert cache.get("What is RAG?", "owner-1") is None
    assert len(cache) == 0


def test_oldest_entry_evicted_when_full():
    cache = TTLCache(max_size=2, clock=FakeClock())
    cache.set("a", "o", 1)
    cache.set("b", "o", 2)
    cache.get("a", "o")
    cache.set("c", "o", 3)

    # insertion order, not recency
    assert cache.get("a", "o") is None
    assert cache.get("b", "o") == 2
    assert cache.get("c", "o") == 3


def test_keys_are_scoped_per_owner():
    cache = TTLCache(clock=FakeClock())
    cache.set("query", "owner-1", "one")
    cache.set("query", "owner-2", "two")
    cache.set("other", "owner-1", "three")

    assert cache.clear_owner("owner-1") == 2
    assert cache.get("query", "owner-1") is None
    assert cache.get("query", "owner-2") == "two"


def test_cleanup_and_stats():
    clock = FakeClock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("short", "o", 1, ttl=1)
    cache.set("long", "o", 2)
    clock.now = 5

    assert cache.cleanup() == 1
    assert cache.has("long", "o")
    assert not cache.has("missing", "o")

    stats = cache.stats()
    assert stats["size"] == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5


def test_rejects_non_positive_size():
    with pytest.raises(ValueError):
        TTLCache(max_size=0)
