"""
Response cache for routed tasks.

Keyed by the input fingerprint (see normalize.fingerprint). Entries are
spread over lock-striped buckets so concurrent requests for different
inputs rarely contend. The cache is bounded: when full, the globally least
recently used entry is evicted.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
import zlib
from collections import OrderedDict
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass, field

from pydantic import BaseModel

from .config import CacheConfig
from .types import CacheError, TaskProcessingResult, TaskType

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A stored result. Owned by the cache; callers get the result only."""

    input_fingerprint: str
    result: TaskProcessingResult
    created_at: float
    expires_at: float
    last_accessed_at: float = 0.0
    access_count: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if not self.last_accessed_at:
            self.last_accessed_at = self.created_at

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStatistics(BaseModel):
    """Point-in-time view of cache usage."""

    entries: int
    max_entries: int
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    hit_rate: float = 0.0
    oldest_entry_at: float | None = None
    newest_entry_at: float | None = None


class _Bucket:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # Least recently used first
        self.entries: OrderedDict[str, CacheEntry] = OrderedDict()


class ResponseCache:
    """
    Bounded, TTL-aware LRU cache of successful results.

    Example:
        cache = ResponseCache(CacheConfig(max_entries=100))
        cache.put(fingerprint("open safari"), result)
        hit = cache.get(fingerprint("Open  Safari"))
    """

    def __init__(self, config: CacheConfig | None = None, clock: Callable[[], float] = time.time):
        self.config = config or CacheConfig()
        self._clock = clock
        self._buckets = [_Bucket() for _ in range(self.config.bucket_count)]

        self._size = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        # Guards the counters above. Size changes are counted while the bucket
        # lock is still held; the counter lock is never held while taking a
        # bucket lock.
        self._counter_lock = threading.Lock()

    def _bucket_for(self, fingerprint: str) -> _Bucket:
        return self._buckets[zlib.crc32(fingerprint.encode("utf-8")) % len(self._buckets)]

    def _count(self, **deltas: int) -> None:
        with self._counter_lock:
            for name, delta in deltas.items():
                setattr(self, f"_{name}", getattr(self, f"_{name}") + delta)

    def _purge_bucket(self, bucket: _Bucket, now: float) -> int:
        """Drop expired entries from a bucket. Caller holds bucket.lock."""
        expired = [key for key, entry in bucket.entries.items() if entry.is_expired(now)]
        for key in expired:
            del bucket.entries[key]
        return len(expired)

    def get(self, fingerprint: str) -> TaskProcessingResult | None:
        """
        Look up a stored result.

        Args:
            fingerprint: Input fingerprint

        Returns:
            The stored result, or None on a miss or an expired entry
        """
        if not self.config.enabled:
            return None

        now = self._clock()
        bucket = self._bucket_for(fingerprint)
        with bucket.lock:
            purged = self._purge_bucket(bucket, now)
            entry = bucket.entries.get(fingerprint)
            if entry is not None:
                entry.last_accessed_at = now
                entry.access_count += 1
                bucket.entries.move_to_end(fingerprint)
                self._count(size=-purged, expirations=purged, hits=1)
                return entry.result
            self._count(size=-purged, expirations=purged, misses=1)
        return None

    def put(
        self,
        fingerprint: str,
        result: TaskProcessingResult,
        ttl: float | None = None,
    ) -> bool:
        """
        Store a result.

        Failed results and outputs longer than max_output_chars are not
        stored.

        Args:
            fingerprint: Input fingerprint
            result: Result to store
            ttl: Seconds to keep the entry; defaults to the task type's TTL

        Returns:
            True if the result was stored

        Raises:
            CacheError: If the fingerprint is empty or ttl is not positive
        """
        if not fingerprint:
            raise CacheError("Cannot cache a result without a fingerprint")
        if not self.config.enabled or not result.success:
            return False
        if len(result.output) > self.config.max_output_chars:
            logger.debug(f"Not caching {len(result.output)} char output for {fingerprint[:12]}")
            return False

        if ttl is None:
            ttl = self.config.ttl_for(result.classification.task_type.value)
        if ttl <= 0:
            raise CacheError(f"Cache TTL must be positive, got {ttl}")

        now = self._clock()
        entry = CacheEntry(
            input_fingerprint=fingerprint,
            result=result,
            created_at=now,
            expires_at=now + ttl,
        )

        bucket = self._bucket_for(fingerprint)
        with bucket.lock:
            purged = self._purge_bucket(bucket, now)
            replaced = bucket.entries.pop(fingerprint, None) is not None
            bucket.entries[fingerprint] = entry
            self._count(size=(0 if replaced else 1) - purged, expirations=purged)

        self._evict_overflow()
        return True

    def _evict_overflow(self) -> None:
        while self._size > self.config.max_entries:
            victim = self._find_lru()
            if victim is None:
                return
            bucket, key, accessed_at = victim
            with bucket.lock:
                entry = bucket.entries.get(key)
                # Touched or removed since we looked; pick again
                if entry is None or entry.last_accessed_at != accessed_at:
                    continue
                del bucket.entries[key]
                self._count(size=-1, evictions=1)
            logger.debug(f"Evicted cache entry {key[:12]}")

    def _find_lru(self) -> tuple[_Bucket, str, float] | None:
        oldest: tuple[_Bucket, str, float] | None = None
        for bucket in self._buckets:
            with bucket.lock:
                if not bucket.entries:
                    continue
                key, entry = next(iter(bucket.entries.items()))
                if oldest is None or entry.last_accessed_at < oldest[2]:
                    oldest = (bucket, key, entry.last_accessed_at)
        return oldest

    def invalidate(self, fingerprint: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        bucket = self._bucket_for(fingerprint)
        with bucket.lock:
            removed = bucket.entries.pop(fingerprint, None) is not None
            if removed:
                self._count(size=-1)
        return removed

    def invalidate_task_type(self, task_type: TaskType) -> int:
        """Remove every entry whose result has the given task type."""
        removed = 0
        for bucket in self._buckets:
            with bucket.lock:
                keys = [
                    key
                    for key, entry in bucket.entries.items()
                    if entry.result.classification.task_type is task_type
                ]
                for key in keys:
                    del bucket.entries[key]
                self._count(size=-len(keys))
            removed += len(keys)
        if removed:
            logger.info(f"Invalidated {removed} cached {task_type.value} results")
        return removed

    def invalidate_all(self) -> None:
        """
        Drop every entry.

        All bucket locks are taken in index order, so no reader can observe
        a partially cleared cache.
        """
        with ExitStack() as stack:
            for bucket in self._buckets:
                stack.enter_context(bucket.lock)
            for bucket in self._buckets:
                bucket.entries.clear()
            with self._counter_lock:
                self._size = 0
        logger.info("Response cache cleared")

    def purge_expired(self) -> int:
        """Remove all expired entries. Returns how many were removed."""
        now = self._clock()
        purged = 0
        for bucket in self._buckets:
            with bucket.lock:
                count = self._purge_bucket(bucket, now)
                self._count(size=-count, expirations=count)
            purged += count
        return purged

    def stats(self) -> CacheStatistics:
        oldest: float | None = None
        newest: float | None = None
        for bucket in self._buckets:
            with bucket.lock:
                for entry in bucket.entries.values():
                    if oldest is None or entry.created_at < oldest:
                        oldest = entry.created_at
                    if newest is None or entry.created_at > newest:
                        newest = entry.created_at

        with self._counter_lock:
            lookups = self._hits + self._misses
            return CacheStatistics(
                entries=self._size,
                max_entries=self.config.max_entries,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                hit_rate=self._hits / lookups if lookups else 0.0,
                oldest_entry_at=oldest,
                newest_entry_at=newest,
            )

    def __len__(self) -> int:
        return self._size


__all__ = ["CacheEntry", "CacheStatistics", "ResponseCache"]
