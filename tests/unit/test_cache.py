"""
Unit tests for the response cache.
"""

import threading

import pytest

from taskroute.cache import CacheEntry, ResponseCache
from taskroute.config import CacheConfig
from taskroute.normalize import fingerprint
from taskroute.types import (
    CacheError,
    ClassificationResult,
    InternalRoutingError,
    ProcessingRoute,
    TaskProcessingResult,
    TaskType,
)


def make_result(output="ok", task_type=TaskType.HELP, success=True):
    return TaskProcessingResult(
        input="input",
        classification=ClassificationResult(task_type=task_type, confidence=0.9),
        route_taken=ProcessingRoute.LOCAL,
        success=success,
        output=output,
        error=None if success else InternalRoutingError("boom"),
    )


@pytest.fixture
def cache(clock):
    return ResponseCache(CacheConfig(max_entries=3, bucket_count=4), clock=clock)


class TestCacheEntry:
    """Tests for CacheEntry."""

    def test_expiry_boundary(self):
        """An entry is expired from expires_at onwards."""
        entry = CacheEntry("fp", make_result(), created_at=10.0, expires_at=20.0)
        assert not entry.is_expired(19.999)
        assert entry.is_expired(20.0)

    def test_last_access_defaults_to_creation(self):
        """A fresh entry was last accessed when created."""
        entry = CacheEntry("fp", make_result(), created_at=10.0, expires_at=20.0)
        assert entry.last_accessed_at == 10.0
        assert entry.access_count == 0


class TestGetPut:
    """Tests for get and put."""

    def test_round_trip(self, cache):
        """A stored result comes back."""
        result = make_result("Battery is at 87%")
        assert cache.put("a", result)
        assert cache.get("a") is result

    def test_miss(self, cache):
        """Unknown fingerprints miss."""
        assert cache.get("missing") is None
        assert cache.stats().misses == 1

    def test_equivalent_inputs_hit(self, cache):
        """Normalized-equal inputs share an entry."""
        cache.put(fingerprint("Open Safari"), make_result())
        assert cache.get(fingerprint("  open   safari")) is not None

    def test_failed_results_not_stored(self, cache):
        """Failures are never cached."""
        assert not cache.put("a", make_result(success=False))
        assert len(cache) == 0

    def test_oversized_output_not_stored(self, clock):
        """Outputs above max_output_chars are not cached."""
        cache = ResponseCache(CacheConfig(max_output_chars=10), clock=clock)
        assert not cache.put("a", make_result("x" * 11))
        assert cache.put("b", make_result("x" * 10))

    def test_disabled_cache(self, clock):
        """A disabled cache stores and returns nothing."""
        cache = ResponseCache(CacheConfig(enabled=False), clock=clock)
        assert not cache.put("a", make_result())
        assert cache.get("a") is None

    def test_empty_fingerprint_rejected(self, cache):
        """A fingerprint is required."""
        with pytest.raises(CacheError):
            cache.put("", make_result())

    def test_non_positive_ttl_rejected(self, cache):
        """TTL must be positive."""
        with pytest.raises(CacheError):
            cache.put("a", make_result(), ttl=0)

    def test_replace_keeps_size(self, cache):
        """Storing the same key twice keeps one entry."""
        cache.put("a", make_result("first"))
        cache.put("a", make_result("second"))
        assert len(cache) == 1
        assert cache.get("a").output == "second"


class TestExpiry:
    """Tests for TTL handling."""

    def test_entry_expires(self, cache, clock):
        """Entries vanish once their TTL has passed."""
        cache.put("a", make_result(), ttl=10)
        clock.advance(9)
        assert cache.get("a") is not None
        clock.advance(1)
        assert cache.get("a") is None
        assert len(cache) == 0
        assert cache.stats().expirations == 1

    def test_task_type_ttl(self, clock):
        """Each task type gets its own TTL."""
        cache = ResponseCache(CacheConfig(), clock=clock)
        cache.put("sys", make_result(task_type=TaskType.SYSTEM_QUERY))
        cache.put("help", make_result(task_type=TaskType.HELP))
        clock.advance(301)
        assert cache.get("sys") is None
        assert cache.get("help") is not None

    def test_default_ttl_for_unlisted_type(self, clock):
        """Types without an explicit TTL use default_ttl."""
        cache = ResponseCache(CacheConfig(default_ttl=60), clock=clock)
        cache.put("web", make_result(task_type=TaskType.WEB_QUERY))
        clock.advance(59)
        assert cache.get("web") is not None
        clock.advance(1)
        assert cache.get("web") is None

    def test_purge_expired(self, cache, clock):
        """purge_expired removes everything past its TTL."""
        cache.put("a", make_result(), ttl=5)
        clock.advance(1)
        cache.put("b", make_result(), ttl=100)
        clock.advance(10)
        assert cache.purge_expired() == 1
        assert len(cache) == 1


class TestEviction:
    """Tests for LRU eviction."""

    def test_evicts_least_recently_used(self, cache, clock):
        """The oldest untouched entry goes first."""
        for key in ("a", "b", "c"):
            cache.put(key, make_result(key))
            clock.advance(1)
        cache.get("a")
        clock.advance(1)
        cache.put("d", make_result("d"))

        assert len(cache) == 3
        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.stats().evictions == 1

    def test_never_exceeds_max_entries(self, cache, clock):
        """Size stays bounded."""
        for i in range(20):
            cache.put(f"key-{i}", make_result())
            clock.advance(1)
            assert len(cache) <= 3


class TestInvalidation:
    """Tests for invalidation."""

    def test_invalidate(self, cache):
        """A single entry can be removed."""
        cache.put("a", make_result())
        assert cache.invalidate("a")
        assert not cache.invalidate("a")
        assert cache.get("a") is None

    def test_invalidate_task_type(self, clock):
        """Only entries of the given type are removed."""
        cache = ResponseCache(CacheConfig(), clock=clock)
        cache.put("h1", make_result(task_type=TaskType.HELP))
        cache.put("h2", make_result(task_type=TaskType.HELP))
        cache.put("c1", make_result(task_type=TaskType.CALCULATION))
        assert cache.invalidate_task_type(TaskType.HELP) == 2
        assert len(cache) == 1
        assert cache.get("c1") is not None

    def test_invalidate_all(self, cache):
        """Everything is dropped."""
        cache.put("a", make_result())
        cache.put("b", make_result())
        cache.invalidate_all()
        assert len(cache) == 0
        assert cache.get("a") is None


class TestStatistics:
    """Tests for cache statistics."""

    def test_hit_rate(self, cache):
        """Hit rate is hits over lookups."""
        cache.put("a", make_result())
        cache.get("a")
        cache.get("a")
        cache.get("b")
        stats = cache.stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(2 / 3)

    def test_entry_times(self, cache, clock):
        """Oldest and newest creation times are reported."""
        cache.put("a", make_result())
        clock.advance(5)
        cache.put("b", make_result())
        stats = cache.stats()
        assert stats.oldest_entry_at == 1000.0
        assert stats.newest_entry_at == 1005.0

    def test_empty_stats(self, cache):
        """An empty cache reports zeros."""
        stats = cache.stats()
        assert stats.entries == 0
        assert stats.hit_rate == 0.0
        assert stats.oldest_entry_at is None


class TestConcurrency:
    """Tests for concurrent access."""

    def test_parallel_puts_respect_bound(self):
        """Concurrent writers never push the cache past max_entries."""
        cache = ResponseCache(CacheConfig(max_entries=50, bucket_count=8))

        def writer(offset):
            for i in range(200):
                cache.put(f"{offset}-{i}", make_result())
                cache.get(f"{offset}-{i // 2}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(cache) <= 50
        assert cache.stats().entries == len(cache)

    def test_clear_during_put_keeps_size_consistent(self):
        """A clear racing a put never leaves the size counter out of step."""
        cache = ResponseCache(CacheConfig(max_entries=10, bucket_count=2))
        inserted = threading.Event()
        cleared = threading.Event()
        count = cache._count

        def slow_count(**deltas):
            if deltas.get("size") == 1 and not inserted.is_set():
                inserted.set()
                # Give the clearing thread a chance to run before the put is counted
                cleared.wait(0.2)
            count(**deltas)

        cache._count = slow_count

        def clear():
            inserted.wait(1.0)
            cache.invalidate_all()
            cleared.set()

        clearer = threading.Thread(target=clear)
        clearer.start()
        cache.put("key", make_result())
        clearer.join()

        stored = sum(len(bucket.entries) for bucket in cache._buckets)
        assert stored == 0
        assert len(cache) == stored
        assert cache.stats().entries == 0
