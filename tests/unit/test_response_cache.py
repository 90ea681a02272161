import pytest

from app.services.response_cache import ResponseCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_get_returns_stored_value_until_ttl(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    cache.put("k", "answer")

    clock.advance(299)
    assert cache.get("k") == "answer"

    clock.advance(1)
    assert cache.get("k") is None


def test_get_is_repeatable_and_counts_hits(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    cache.put("k", "answer")

    assert cache.get("k") == "answer"
    assert cache.get("k") == "answer"
    assert cache.get("missing") is None

    stats = cache.stats()
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["size"] == 1


def test_full_cache_evicts_oldest_entry(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=2, clock=clock)
    cache.put("first", 1)
    clock.advance(1)
    cache.put("second", 2)
    clock.advance(1)
    cache.put("third", 3)

    assert len(cache) == 2
    assert cache.get("first") is None
    assert cache.get("second") == 2
    assert cache.get("third") == 3
    assert cache.stats()["evictions"] == 1


def test_refreshing_a_key_resets_its_age_and_does_not_evict(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=2, clock=clock)
    cache.put("a", "old")
    clock.advance(1)
    cache.put("b", "b")
    clock.advance(1)

    cache.put("a", "new")
    assert len(cache) == 2
    assert cache.stats()["evictions"] == 0

    # "b" is now the oldest entry
    cache.put("c", "c")
    assert cache.get("b") is None
    assert cache.get("a") == "new"

    clock.advance(299)
    assert cache.get("a") == "new"


def test_clear_reports_removed_entries(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    cache.put("a", 1)
    cache.put("b", 2)

    assert cache.clear() == 2
    assert len(cache) == 0
    assert cache.get("a") is None


def test_make_key_is_deterministic_and_separates_parts():
    key = ResponseCache.make_key("user-1", "analysis-1", "what is my score")

    assert key == ResponseCache.make_key("user-1", "analysis-1", "what is my score")
    assert key != ResponseCache.make_key("user-1", "analysis-2", "what is my score")
    assert ResponseCache.make_key("ab", "c") != ResponseCache.make_key("a", "bc")
    assert len(key) == 64


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        ResponseCache(max_entries=0)
