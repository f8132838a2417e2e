"""
Unit tests for the result cache and its backends.
"""

import threading
from unittest.mock import MagicMock

import pytest

from harmony_ai.cache.backends import CacheEntry, InMemoryCacheBackend, RedisCacheBackend
from harmony_ai.cache.result_cache import ResultCache


class FakeClock:
    def __init__(self, now=5000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(InMemoryCacheBackend(max_entries=3, clock=clock), default_ttl=60, clock=clock)


def test_miss_then_hit(cache):
    """Test a stored value is returned until expiry."""
    assert cache.get("fp-1") == (None, False)

    cache.put("fp-1", {"bio": "hello"})

    assert cache.get("fp-1") == ({"bio": "hello"}, True)
    stats = cache.stats()
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.hit_rate == 0.5
    assert stats.size == 1


def test_entries_expire(cache, clock):
    """Test TTL expiry removes entries and is counted."""
    cache.put("fp-1", {"bio": "hello"}, ttl=10)
    clock.now += 11

    assert cache.get("fp-1") == (None, False)
    assert cache.stats().expirations == 1


def test_lru_eviction(cache):
    """Test the least recently used entry goes first once max_entries is reached."""
    for i in range(3):
        cache.put(f"fp-{i}", {"n": i})
    cache.get("fp-0")
    cache.put("fp-3", {"n": 3})

    assert cache.get("fp-1") == (None, False)
    assert cache.get("fp-0")[1] is True
    assert cache.stats().evictions == 1


def test_returned_values_are_copies(cache):
    """Test callers cannot mutate what is cached."""
    cache.put("fp-1", {"variations": ["a"]})
    value, _ = cache.get("fp-1")
    value["variations"].append("b")

    assert cache.get("fp-1")[0] == {"variations": ["a"]}


def test_lookup_keeps_provider(cache):
    cache.put("fp-1", {"bio": "hello"}, provider="gemini")

    entry = cache.lookup("fp-1")

    assert entry.provider == "gemini"
    assert entry.expires_at - entry.created_at == 60


def test_uncounted_lookup_leaves_stats_alone(cache):
    cache.lookup("fp-1", count=False)
    cache.put("fp-1", {"bio": "hello"})
    cache.lookup("fp-1", count=False)

    stats = cache.stats()
    assert stats.hits == 0
    assert stats.misses == 0


def test_invalidate(cache):
    cache.put("fp-1", {"bio": "hello"})
    cache.put("fp-2", {"bio": "bye"})

    assert cache.invalidate("fp-1") is True
    assert cache.invalidate("fp-1") is False
    assert cache.invalidate_all() == 1
    assert cache.stats().size == 0


def test_disabled_cache_stores_nothing(clock):
    cache = ResultCache(InMemoryCacheBackend(clock=clock), enabled=False, clock=clock)
    cache.put("fp-1", {"bio": "hello"})

    assert cache.get("fp-1") == (None, False)


def test_invalidate_all_with_concurrent_readers(clock):
    """Test clearing while other threads read never raises."""
    cache = ResultCache(InMemoryCacheBackend(clock=clock), clock=clock)
    for i in range(200):
        cache.put(f"fp-{i}", {"n": i})
    errors = []
    stop = threading.Event()

    def reader():
        try:
            while not stop.is_set():
                for i in range(200):
                    cache.get(f"fp-{i}")
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    cache.invalidate_all()
    stop.set()
    for thread in threads:
        thread.join()

    assert errors == []
    assert cache.stats().size == 0


def test_redis_backend_round_trip(clock):
    """Test the Redis backend writes JSON with SETEX and reads it back."""
    client = MagicMock()
    backend = RedisCacheBackend(client, clock=clock)
    entry = CacheEntry("fp-1", {"bio": "hello"}, "gemini", clock.now, clock.now + 30)

    backend.set("fp-1", entry)

    key, ttl, raw = client.setex.call_args.args
    assert key == "harmony:cache:fp-1"
    assert ttl == 30
    client.get.return_value = raw
    assert backend.get("fp-1") == entry


def test_redis_backend_drops_corrupt_entries(clock):
    client = MagicMock()
    client.get.return_value = "{not json"
    backend = RedisCacheBackend(client, clock=clock)

    assert backend.get("fp-1") is None
    client.delete.assert_called_once_with("harmony:cache:fp-1")


def test_redis_backend_clear_scans_prefix(clock):
    client = MagicMock()
    client.scan_iter.return_value = iter(["harmony:cache:a", "harmony:cache:b"])
    client.delete.return_value = 1
    backend = RedisCacheBackend(client, clock=clock)

    assert backend.clear() == 2
    client.scan_iter.assert_called_once_with(match="harmony:cache:*")
