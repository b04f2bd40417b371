"""
Caching components for aithrottle.

Keeps provider responses and embedding vectors so that identical
requests are not sent to the provider twice within the TTL.

Example:
    >>> from aithrottle.caching import AICache, AICacheConfig, fingerprint
    >>>
    >>> cache = AICache(AICacheConfig(max_size=1000, ttl=3600))
    >>>
    >>> key = fingerprint("gpt-4o", prompt, temperature=0.2)
    >>> cache.cache_response(key, "Meeting moved to 3pm.", {"model": "gpt-4o"})
    >>> cache.get_cached_response(key)
    'Meeting moved to 3pm.'
    >>>
    >>> cache.cache_embedding(fingerprint(text), [0.12, -0.03, 0.88])
    >>>
    >>> stats = cache.get_stats()
    >>> print(f"Hit rate: {stats.responses.hit_rate:.2%}")
"""

from aithrottle.caching.ai_cache import (
    EMBEDDING_STORE,
    RESPONSE_STORE,
    AICache,
    AICacheConfig,
    AICacheStats,
    fingerprint,
)
from aithrottle.caching.ttl_store import (
    CacheConfig,
    CacheEntry,
    CacheStats,
    TTLStore,
)

__all__ = [
    # AI cache
    "AICache",
    "AICacheConfig",
    "AICacheStats",
    "fingerprint",
    "RESPONSE_STORE",
    "EMBEDDING_STORE",
    # Single store
    "TTLStore",
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
]
