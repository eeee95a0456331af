"""Unit tests for the TTL query cache."""

import pytest

from shared_memory.errors import InvalidInputError
from shared_memory.knowledge.query_cache import QueryCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return QueryCache(ttl_seconds=300, max_entries=3, clock=clock)


def test_get_and_put(cache):
    assert cache.get("q") is None

    cache.put("q", "result")

    assert cache.get("q") == "result"
    assert cache.hits == 1
    assert cache.misses == 1


def test_entries_expire_after_ttl(cache, clock):
    cache.put("q", "result")

    clock.now = 299.9
    assert cache.get("q") == "result"

    clock.now = 300.0
    assert cache.get("q") is None
    assert len(cache) == 0


def test_oldest_entry_evicted_at_capacity(cache):
    for key in ("a", "b", "c", "d"):
        cache.put(key, key.upper())

    assert len(cache) == 3
    assert cache.get("a") is None
    assert cache.get("d") == "D"


def test_rewriting_a_key_refreshes_its_age(cache, clock):
    cache.put("a", 1)
    cache.put("b", 2)
    clock.now = 100
    cache.put("a", 3)
    cache.put("c", 4)
    cache.put("d", 5)

    assert cache.get("b") is None
    assert cache.get("a") == 3


def test_clear_discards_in_flight_results(cache):
    """Test that a result computed before clear() is not stored after it."""
    generation = cache.generation

    cache.clear()

    assert cache.put("q", "stale", generation=generation) is False
    assert cache.get("q") is None
    assert cache.put("q", "fresh", generation=cache.generation) is True


def test_purge_expired(cache, clock):
    cache.put("old", 1)
    clock.now = 200
    cache.put("new", 2)
    clock.now = 350

    assert cache.purge_expired() == 1
    assert cache.get("new") == 2


@pytest.mark.parametrize("kwargs", [{"ttl_seconds": 0}, {"max_entries": 0}])
def test_invalid_arguments(kwargs):
    with pytest.raises(InvalidInputError):
        QueryCache(**kwargs)
