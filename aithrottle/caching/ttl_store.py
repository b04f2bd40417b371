"""
Bounded key-value store with per-entry TTL and LRU eviction.

One ``TTLStore`` backs each of the AI cache's stores. Expiry is lazy: an
entry past its TTL is treated as absent the next time it is read, whether
or not it has been physically removed yet.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from aithrottle.exceptions import ConfigurationError
from aithrottle.observability.hooks import (
    METRIC_CACHE_EVICTIONS,
    METRIC_CACHE_EXPIRATIONS,
    METRIC_CACHE_HITS,
    METRIC_CACHE_MISSES,
    ObservabilityHooks,
)

logger = logging.getLogger(__name__)

V = TypeVar("V")

# Sentinel for "use the store default", since None means "never expires"
_DEFAULT_TTL: Any = object()


@dataclass
class CacheConfig:
    """
    Configuration for a single store.

    Attributes:
        max_size: Maximum number of entries kept.
        ttl: Time-to-live in seconds; None means entries never expire.

    Example:
        >>> config = CacheConfig(max_size=500, ttl=600)
    """

    max_size: int = 1000
    ttl: float | None = 3600.0

    def __post_init__(self) -> None:
        """Validate limits."""
        if isinstance(self.max_size, bool) or not isinstance(self.max_size, int) or self.max_size < 1:
            raise ConfigurationError("max_size", expected="integer >= 1", received=self.max_size)
        if self.ttl is not None and self.ttl <= 0:
            raise ConfigurationError(
                "ttl", expected="positive number of seconds or None", received=self.ttl
            )


@dataclass
class CacheEntry(Generic[V]):
    """
    A single cache entry.

    Attributes:
        key: Caller-chosen fingerprint.
        value: Cached value.
        created_at: Store clock reading when the entry was written.
        expires_at: Store clock reading after which the entry is stale
            (None = never).
        timestamp: Wall-clock time (epoch seconds) of the write.
        hits: Number of reads served from this entry.
        metadata: Caller-defined key-value data stored with the value.
    """

    key: str
    value: V
    created_at: float
    expires_at: float | None = None
    timestamp: float = field(default_factory=time.time)
    hits: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        """Check if this entry has expired at store-clock time ``now``."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at

    def access(self) -> None:
        """Record an access to this entry."""
        self.hits += 1

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (without the value)."""
        return {
            "key": self.key,
            "timestamp": self.timestamp,
            "expires_at": self.expires_at,
            "hits": self.hits,
            "metadata": dict(self.metadata),
        }


@dataclass
class CacheStats:
    """
    Cumulative statistics for one store.

    Attributes:
        size: Entries currently held (expired entries not yet purged included).
        max_size: Configured capacity.
        hits: Reads that returned a value.
        misses: Reads that found no usable entry.
        evictions: Entries removed to make room.
        expirations: Entries dropped because their TTL elapsed.

    Example:
        >>> stats = cache.responses.get_stats()
        >>> print(f"Hit rate: {stats.hit_rate:.2%}")
    """

    size: int = 0
    max_size: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def total_requests(self) -> int:
        """Get total number of cache reads."""
        return self.hits + self.misses

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "size": self.size,
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "hit_rate": self.hit_rate,
        }


class TTLStore(Generic[V]):
    """
    Size-bounded LRU store with time-to-live.

    Reads refresh an entry's recency, so once the store is full the
    entry that was read least recently is evicted first, regardless of
    when it was written. Operations are guarded by a re-entrant lock so
    the store may also be used from worker threads.

    Example:
        >>> store = TTLStore("responses", CacheConfig(max_size=2, ttl=60))
        >>> store.set("a", "alpha")
        >>> store.set("b", "beta")
        >>> store.get("a")          # "a" is now the most recently used
        'alpha'
        >>> store.set("c", "gamma")  # evicts "b"
        >>> store.get("b") is None
        True
    """

    def __init__(
        self,
        name: str,
        config: CacheConfig | None = None,
        *,
        hooks: ObservabilityHooks | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the store.

        Args:
            name: Store name, used in logs and as the ``store`` metric tag.
            config: Capacity and TTL settings.
            hooks: Optional metrics registry.
            clock: Monotonic time source in seconds.
        """
        self.name = name
        self.config = config or CacheConfig()
        self._hooks = hooks
        self._clock = clock

        # Ordered least- to most-recently used
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats(max_size=self.config.max_size)

    def get(self, key: str, default: Any = None) -> V | Any:
        """
        Get a cached value.

        Args:
            key: Cache key.
            default: Value to return if the key is absent or expired.

        Returns:
            The cached value, or ``default``.
        """
        entry = self.get_entry(key)
        if entry is None:
            return default
        return entry.value

    def get_entry(self, key: str) -> CacheEntry[V] | None:
        """
        Get the full entry for a key, counted as a read.

        Returns:
            The entry, or None if absent or expired.
        """
        with self._lock:
            entry = self._entries.get(key)

            if entry is None:
                self._record_miss()
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats.expirations += 1
                self._emit(METRIC_CACHE_EXPIRATIONS)
                self._record_miss()
                logger.debug(f"Cache entry expired: store={self.name} key={key}")
                return None

            entry.access()
            self._entries.move_to_end(key)
            self._stats.hits += 1
            self._emit(METRIC_CACHE_HITS)
            return entry

    def set(
        self,
        key: str,
        value: V,
        ttl: Any = _DEFAULT_TTL,
        metadata: dict[str, Any] | None = None,
    ) -> CacheEntry[V]:
        """
        Insert or overwrite an entry.

        Args:
            key: Cache key.
            value: Value to cache.
            ttl: Per-entry TTL in seconds overriding the store default
                (None = never expires).
            metadata: Caller-defined data stored with the value.

        Returns:
            The stored entry.
        """
        if ttl is _DEFAULT_TTL:
            ttl = self.config.ttl

        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl if ttl is not None else None,
            metadata=dict(metadata or {}),
        )

        with self._lock:
            # Overwriting must not evict some other entry
            self._entries.pop(key, None)

            while len(self._entries) >= self.config.max_size:
                self._evict_one()

            self._entries[key] = entry

        return entry

    def delete(self, key: str) -> bool:
        """
        Remove one entry.

        Returns:
            True if the key was present.
        """
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """
        Remove every entry. Statistics counters are kept.

        Returns:
            Number of entries cleared.
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.debug(f"Cleared {count} entries from store={self.name}")
        return count

    def cleanup_expired(self) -> int:
        """
        Physically remove all expired entries.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired_keys = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired_keys:
                del self._entries[key]
            self._stats.expirations += len(expired_keys)

        if expired_keys:
            self._emit(METRIC_CACHE_EXPIRATIONS, float(len(expired_keys)))
        return len(expired_keys)

    def get_stats(self) -> CacheStats:
        """
        Get a copy of the store statistics. Does not modify anything.
        """
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                max_size=self.config.max_size,
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
            )

    def keys(self) -> list[str]:
        """Keys from least to most recently used, expired ones included."""
        with self._lock:
            return list(self._entries)

    def _evict_one(self) -> None:
        """Evict the least recently used entry."""
        key, _ = self._entries.popitem(last=False)
        self._stats.evictions += 1
        self._emit(METRIC_CACHE_EVICTIONS)
        logger.debug(f"Evicted cache entry: store={self.name} key={key}")

    def _record_miss(self) -> None:
        self._stats.misses += 1
        self._emit(METRIC_CACHE_MISSES)

    def _emit(self, name: str, value: float = 1.0) -> None:
        if self._hooks is not None:
            self._hooks.emit_counter(name, value, {"store": self.name})

    def __contains__(self, key: str) -> bool:
        """Check for a live entry without touching recency or statistics."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
