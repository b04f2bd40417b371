"""
Tests for the TTL store and the response/embedding cache.
"""

import threading

import pytest

from aithrottle.caching import (
    AICache,
    AICacheConfig,
    AICacheStats,
    CacheConfig,
    CacheEntry,
    CacheStats,
    TTLStore,
    fingerprint,
)
from aithrottle.exceptions import ConfigurationError
from aithrottle.observability import (
    METRIC_CACHE_EVICTIONS,
    METRIC_CACHE_EXPIRATIONS,
    METRIC_CACHE_HITS,
    METRIC_CACHE_MISSES,
)
from tests.conftest import FakeClock


class TestCacheEntry:
    """Tests for CacheEntry dataclass."""

    def test_is_expired_no_expiry(self):
        """Test entry without expiry never expires."""
        entry = CacheEntry(key="k", value="v", created_at=0.0)
        assert not entry.is_expired(10**9)

    def test_is_expired_at_boundary(self):
        """Test an entry is stale exactly at its expiry time."""
        entry = CacheEntry(key="k", value="v", created_at=0.0, expires_at=5.0)
        assert not entry.is_expired(4.999)
        assert entry.is_expired(5.0)

    def test_access(self):
        """Test recording access."""
        entry = CacheEntry(key="k", value="v", created_at=0.0)
        entry.access()
        entry.access()
        assert entry.hits == 2

    def test_to_dict(self):
        """Test dictionary conversion leaves the value out."""
        entry = CacheEntry(key="k", value="secret text", created_at=0.0, metadata={"model": "m"})
        data = entry.to_dict()
        assert data["key"] == "k"
        assert data["metadata"] == {"model": "m"}
        assert "value" not in data


class TestCacheConfig:
    """Tests for CacheConfig and AICacheConfig."""

    def test_defaults(self):
        """Test default configuration values."""
        config = AICacheConfig()
        assert config.max_size == 1000
        assert config.ttl == 3600.0
        assert config.embedding_ttl_multiplier == 24.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_size": 0}, {"max_size": -1}, {"ttl": 0}, {"ttl": -5}, {"max_size": 2.5}],
    )
    def test_invalid_store_config(self, kwargs):
        """Test invalid store settings fail at construction."""
        with pytest.raises(ConfigurationError):
            CacheConfig(**kwargs)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_size": 0},
            {"ttl": -1},
            {"embedding_ttl_multiplier": 0},
            {"embedding_max_size": 0},
        ],
    )
    def test_invalid_ai_cache_config(self, kwargs):
        """Test invalid cache settings fail at construction."""
        with pytest.raises(ConfigurationError):
            AICacheConfig(**kwargs)

    def test_embedding_store_config(self):
        """Test the embedding store derives its TTL and size."""
        config = AICacheConfig(max_size=50, ttl=10.0, embedding_max_size=500)
        assert config.embedding_store_config() == CacheConfig(max_size=500, ttl=240.0)
        assert config.response_store_config() == CacheConfig(max_size=50, ttl=10.0)

    def test_from_env(self, monkeypatch):
        """Test reading cache settings from the environment."""
        monkeypatch.setenv("AITHROTTLE_CACHE_MAX_SIZE", "250")
        monkeypatch.setenv("AITHROTTLE_CACHE_TTL_SECONDS", "120")
        config = AICacheConfig.from_env()
        assert config.max_size == 250
        assert config.ttl == 120.0

    def test_from_env_invalid(self, monkeypatch):
        """Test a non-numeric variable."""
        monkeypatch.setenv("AITHROTTLE_CACHE_MAX_SIZE", "lots")
        with pytest.raises(ConfigurationError) as exc_info:
            AICacheConfig.from_env()
        assert exc_info.value.config_key == "AITHROTTLE_CACHE_MAX_SIZE"


class TestTTLStore:
    """Tests for TTLStore."""

    def test_set_and_get(self, clock):
        """Test basic round trip."""
        store = TTLStore("test", CacheConfig(max_size=5, ttl=10.0), clock=clock)
        store.set("a", 1)
        assert store.get("a") == 1
        assert store.get("missing") is None
        assert store.get("missing", default="fallback") == "fallback"

    def test_entry_metadata(self, clock):
        """Test entries carry metadata and hit counts."""
        store = TTLStore("test", clock=clock)
        store.set("a", "text", metadata={"model": "gpt-4o"})
        entry = store.get_entry("a")
        assert entry.metadata == {"model": "gpt-4o"}
        assert entry.hits == 1
        assert entry.created_at == clock.now
        assert entry.expires_at == clock.now + 3600.0

    def test_per_entry_ttl(self, clock):
        """Test the per-entry TTL overrides the default."""
        store = TTLStore("test", CacheConfig(ttl=10.0), clock=clock)
        store.set("short", 1, ttl=1.0)
        store.set("forever", 2, ttl=None)
        store.set("default", 3)

        clock.advance(5.0)
        assert store.get("short") is None
        assert store.get("default") == 3

        clock.advance(10**6)
        assert store.get("default") is None
        assert store.get("forever") == 2

    def test_store_without_ttl(self, clock):
        """Test a store whose default TTL is None."""
        store = TTLStore("test", CacheConfig(ttl=None), clock=clock)
        store.set("a", 1)
        clock.advance(10**9)
        assert store.get("a") == 1

    def test_expired_read_counts_miss_and_expiration(self, clock):
        """Test reading an expired entry."""
        store = TTLStore("test", CacheConfig(ttl=1.0), clock=clock)
        store.set("a", 1)
        clock.advance(1.0)

        assert store.get("a") is None
        stats = store.get_stats()
        assert stats.misses == 1
        assert stats.expirations == 1
        assert stats.size == 0

    def test_overwrite_does_not_evict(self, clock):
        """Test overwriting a key in a full store keeps the other entries."""
        store = TTLStore("test", CacheConfig(max_size=2), clock=clock)
        store.set("a", 1)
        store.set("b", 2)
        store.set("a", 3)

        assert len(store) == 2
        assert store.get("a") == 3
        assert store.get("b") == 2
        assert store.get_stats().evictions == 0

    def test_lru_eviction(self, clock):
        """Test the least recently used entry is evicted."""
        store = TTLStore("test", CacheConfig(max_size=3), clock=clock)
        store.set("a", 1)
        store.set("b", 2)
        store.set("c", 3)
        store.get("a")
        store.set("d", 4)

        assert "b" not in store
        assert store.keys() == ["c", "a", "d"]
        assert store.get_stats().evictions == 1

    def test_contains_leaves_stats_and_order(self, clock):
        """Test membership checks are not reads."""
        store = TTLStore("test", CacheConfig(max_size=2, ttl=5.0), clock=clock)
        store.set("a", 1)
        store.set("b", 2)

        assert "a" in store
        assert "zzz" not in store
        assert store.keys() == ["a", "b"]
        stats = store.get_stats()
        assert stats.hits == 0
        assert stats.misses == 0

        clock.advance(5.0)
        assert "a" not in store

    def test_delete(self, clock):
        """Test deleting an entry."""
        store = TTLStore("test", clock=clock)
        store.set("a", 1)
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.get("a") is None

    def test_cleanup_expired(self, clock):
        """Test purging expired entries."""
        store = TTLStore("test", CacheConfig(ttl=1.0), clock=clock)
        store.set("old", 1)
        clock.advance(2.0)
        store.set("new", 2)

        assert len(store) == 2
        assert store.cleanup_expired() == 1
        assert list(store) == ["new"]
        assert store.get_stats().expirations == 1

    def test_stats_copy(self, clock):
        """Test get_stats returns an independent snapshot."""
        store = TTLStore("test", clock=clock)
        store.set("a", 1)
        store.get("a")
        store.get("b")

        stats = store.get_stats()
        assert isinstance(stats, CacheStats)
        assert stats.hit_rate == 0.5
        assert stats.total_requests == 2
        stats.hits = 100
        assert store.get_stats().hits == 1

    def test_metrics_tagged_with_store(self, clock, hooks, memory_hook):
        """Test metrics carry the store name."""
        store = TTLStore("responses", CacheConfig(max_size=1, ttl=1.0), hooks=hooks, clock=clock)
        tags = {"store": "responses"}
        store.set("a", 1)
        store.get("a")
        store.get("missing")
        store.set("b", 2)
        clock.advance(1.0)
        store.get("b")

        assert memory_hook.get_counter(METRIC_CACHE_HITS, tags) == 1
        assert memory_hook.get_counter(METRIC_CACHE_MISSES, tags) == 2
        assert memory_hook.get_counter(METRIC_CACHE_EVICTIONS, tags) == 1
        assert memory_hook.get_counter(METRIC_CACHE_EXPIRATIONS, tags) == 1

    def test_thread_safety(self):
        """Test concurrent writers never exceed capacity."""
        store = TTLStore("test", CacheConfig(max_size=50))

        def writer(prefix):
            for i in range(200):
                store.set(f"{prefix}-{i}", i)
                store.get(f"{prefix}-{i // 2}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 50


class TestAICacheResponses:
    """Tests for the response store."""

    def test_round_trip(self, small_cache):
        """Test storing and reading a response."""
        small_cache.cache_response("test-key", "test response")
        assert small_cache.get_cached_response("test-key") == "test response"

    def test_missing_returns_none(self, small_cache):
        """Test a missing key."""
        assert small_cache.get_cached_response("non-existent") is None

    @pytest.mark.parametrize("content", [None, 42, b"bytes", ["list"]])
    def test_non_str_content_rejected(self, small_cache, content):
        """Test non-string content raises a clear TypeError and stores nothing."""
        with pytest.raises(TypeError, match="must be str"):
            small_cache.cache_response("k", content)
        assert small_cache.get_stats().responses.size == 0

    def test_entry_has_metadata_and_timestamp(self, small_cache):
        """Test the full response entry."""
        small_cache.cache_response("k", "text", {"model": "gemini-1.5-pro", "tokens": 12})
        entry = small_cache.get_response_entry("k")
        assert entry.value == "text"
        assert entry.metadata == {"model": "gemini-1.5-pro", "tokens": 12}
        assert entry.timestamp > 0

    def test_expires_after_ttl(self, small_cache, clock):
        """Test a response is served before its TTL and gone after."""
        small_cache.cache_response("k", "text")
        clock.advance(0.5)
        assert small_cache.get_cached_response("k") == "text"
        clock.advance(0.5)
        assert small_cache.get_cached_response("k") is None

    def test_capacity_plus_five(self, small_cache):
        """Test filling past capacity evicts the oldest and keeps the newest."""
        for i in range(15):
            small_cache.cache_response(f"key-{i}", f"response-{i}")

        assert small_cache.get_cached_response("key-0") is None
        assert small_cache.get_cached_response("key-14") == "response-14"
        assert small_cache.get_stats().responses.size == 10

    def test_recent_read_protects_old_entry(self, small_cache):
        """Test a recently read entry survives eviction of its peers."""
        for i in range(10):
            small_cache.cache_response(f"key-{i}", f"response-{i}")
        assert small_cache.get_cached_response("key-0") == "response-0"

        for i in range(10, 15):
            small_cache.cache_response(f"key-{i}", f"response-{i}")

        assert small_cache.get_cached_response("key-0") == "response-0"
        for i in range(1, 6):
            assert small_cache.get_cached_response(f"key-{i}") is None
        assert small_cache.get_cached_response("key-6") == "response-6"
        assert small_cache.get_stats().responses.evictions == 5


class TestAICacheEmbeddings:
    """Tests for the embedding store."""

    def test_round_trip(self, small_cache):
        """Test storing and reading an embedding."""
        small_cache.cache_embedding("text", [0.1, 0.2, 0.3])
        assert small_cache.get_cached_embedding("text") == [0.1, 0.2, 0.3]

    def test_missing_returns_none(self, small_cache):
        """Test a missing key."""
        assert small_cache.get_cached_embedding("nothing") is None

    def test_vector_is_copied(self, small_cache):
        """Test caller mutations never reach the cached vector."""
        vector = [1.0, 2.0]
        small_cache.cache_embedding("k", vector)
        vector.append(3.0)

        returned = small_cache.get_cached_embedding("k")
        returned[0] = 99.0
        assert small_cache.get_cached_embedding("k") == [1.0, 2.0]

    def test_empty_vector(self, small_cache):
        """Test an empty vector is a hit, not a miss."""
        small_cache.cache_embedding("k", [])
        assert small_cache.get_cached_embedding("k") == []

    def test_lives_longer_than_responses(self, small_cache, clock):
        """Test embeddings keep 24 times the response TTL."""
        small_cache.cache_response("r", "text")
        small_cache.cache_embedding("e", [0.5])

        clock.advance(2.0)
        assert small_cache.get_cached_response("r") is None
        assert small_cache.get_cached_embedding("e") == [0.5]

        clock.advance(21.0)
        assert small_cache.get_cached_embedding("e") == [0.5]
        clock.advance(1.0)
        assert small_cache.get_cached_embedding("e") is None

    def test_no_ttl_disables_both(self, clock):
        """Test ttl=None keeps responses and embeddings forever."""
        cache = AICache(AICacheConfig(ttl=None), clock=clock)
        cache.cache_response("r", "text")
        cache.cache_embedding("e", [1.0])
        clock.advance(10**9)
        assert cache.get_cached_response("r") == "text"
        assert cache.get_cached_embedding("e") == [1.0]

    def test_separate_capacity(self, clock):
        """Test embedding_max_size sizes the embedding store independently."""
        cache = AICache(AICacheConfig(max_size=2, embedding_max_size=4), clock=clock)
        for i in range(4):
            cache.cache_response(f"r{i}", "x")
            cache.cache_embedding(f"e{i}", [float(i)])

        stats = cache.get_stats()
        assert stats.responses.size == 2
        assert stats.embeddings.size == 4


class TestAICacheMaintenance:
    """Tests for clearing, cleanup and statistics."""

    def test_clear_response_cache(self, small_cache):
        """Test clearing only responses."""
        small_cache.cache_response("k1", "r1")
        small_cache.cache_embedding("k2", [1.0, 2.0])

        assert small_cache.clear_response_cache() == 1
        assert small_cache.get_cached_response("k1") is None
        assert small_cache.get_cached_embedding("k2") == [1.0, 2.0]

    def test_clear_embedding_cache(self, small_cache):
        """Test clearing only embeddings."""
        small_cache.cache_response("k1", "r1")
        small_cache.cache_embedding("k2", [1.0])

        assert small_cache.clear_embedding_cache() == 1
        assert small_cache.get_cached_response("k1") == "r1"
        assert small_cache.get_cached_embedding("k2") is None

    def test_clear_all(self, small_cache):
        """Test clearing both stores."""
        small_cache.cache_response("k1", "r1")
        small_cache.cache_embedding("k2", [1.0])

        assert small_cache.clear_all() == 2
        assert small_cache.get_cached_response("k1") is None
        assert small_cache.get_cached_embedding("k2") is None

    def test_stats(self, small_cache):
        """Test cumulative statistics per store."""
        small_cache.cache_response("k1", "r1")
        small_cache.get_cached_response("k1")
        small_cache.get_cached_response("k2")
        small_cache.cache_embedding("e", [1.0])

        stats = small_cache.get_stats()
        assert isinstance(stats, AICacheStats)
        assert stats.responses.size == 1
        assert stats.responses.hits == 1
        assert stats.responses.misses == 1
        assert stats.embeddings.size == 1
        assert stats.embeddings.hits == 0
        assert stats.to_dict()["responses"]["hit_rate"] == 0.5

    def test_stats_do_not_mutate(self, small_cache):
        """Test calling get_stats twice returns identical values."""
        small_cache.cache_response("k1", "r1")
        small_cache.get_cached_response("k1")
        assert small_cache.get_stats() == small_cache.get_stats()

    def test_clear_keeps_counters(self, small_cache):
        """Test clearing entries does not reset hit and miss counts."""
        small_cache.cache_response("k1", "r1")
        small_cache.get_cached_response("k1")
        small_cache.clear_all()

        stats = small_cache.get_stats()
        assert stats.responses.size == 0
        assert stats.responses.hits == 1

    def test_cleanup_expired(self, small_cache, clock):
        """Test purging expired entries across both stores."""
        small_cache.cache_response("r", "text")
        small_cache.cache_embedding("e", [1.0])
        clock.advance(1.0)

        assert small_cache.cleanup_expired() == 1
        assert small_cache.get_stats().embeddings.size == 1

    def test_default_clock(self):
        """Test the cache works with the real monotonic clock."""
        cache = AICache()
        cache.cache_response("k", "v")
        assert cache.get_cached_response("k") == "v"
        assert cache.responses.config.ttl == 3600.0
        assert cache.embeddings.config.ttl == 86400.0

    def test_fake_clock_type(self):
        """Test any zero-argument callable can serve as the clock."""
        clock = FakeClock(start=0.0)
        cache = AICache(AICacheConfig(ttl=3.0), clock=clock)
        cache.cache_response("k", "v")
        clock.advance(3.0)
        assert cache.get_cached_response("k") is None


class TestFingerprint:
    """Tests for cache key derivation."""

    def test_deterministic(self):
        """Test the same inputs give the same key."""
        assert fingerprint("gpt-4o", "hello", temperature=0.2) == fingerprint(
            "gpt-4o", "hello", temperature=0.2
        )

    def test_param_order_irrelevant(self):
        """Test keyword order does not change the key."""
        assert fingerprint("m", a=1, b=2) == fingerprint("m", b=2, a=1)

    def test_inputs_distinguish(self):
        """Test different inputs give different keys."""
        base = fingerprint("gpt-4o", "hello", temperature=0.2)
        assert base != fingerprint("gpt-4o", "hello", temperature=0.3)
        assert base != fingerprint("gpt-4o", "hello!", temperature=0.2)
        assert base != fingerprint("gpt-4o-mini", "hello", temperature=0.2)

    def test_hex_digest(self):
        """Test the key is a SHA-256 hex digest."""
        key = fingerprint("x")
        assert len(key) == 64
        int(key, 16)

    def test_non_json_values(self):
        """Test values JSON cannot encode still produce a key."""
        assert len(fingerprint("m", stop={"END"})) == 64
