"""
Response and embedding cache for AI provider calls.

Generated text goes stale quickly, while embeddings of identical text
stay valid for a long time, so the two live in separate stores with
their own capacity and TTL.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from aithrottle.caching.ttl_store import CacheConfig, CacheEntry, CacheStats, TTLStore
from aithrottle.exceptions import ConfigurationError
from aithrottle.observability.hooks import ObservabilityHooks

logger = logging.getLogger(__name__)

ENV_PREFIX = "AITHROTTLE_"

RESPONSE_STORE = "responses"
EMBEDDING_STORE = "embeddings"


def fingerprint(*parts: Any, **params: Any) -> str:
    """
    Derive a deterministic cache key from request inputs.

    Args:
        *parts: Positional inputs such as the model name and prompt text.
        **params: Generation parameters (temperature, max_tokens, ...).

    Returns:
        SHA-256 hex digest of the canonical JSON form of the inputs.
        Values JSON cannot encode are converted with ``str()``; objects
        whose ``str()`` embeds a memory address yield a different key per
        instance and should not be passed in.

    Example:
        >>> key = fingerprint("gpt-4o", "Summarize this email", temperature=0.2)
        >>> key == fingerprint("gpt-4o", "Summarize this email", temperature=0.2)
        True
    """
    key_data = {
        "parts": list(parts),
        "params": params,
    }
    key_str = json.dumps(key_data, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(key_str.encode()).hexdigest()


@dataclass
class AICacheConfig:
    """
    Configuration for the AI cache.

    Attributes:
        max_size: Capacity of the response store (and of the embedding
            store unless ``embedding_max_size`` is set).
        ttl: Response TTL in seconds; None disables expiry.
        embedding_ttl_multiplier: Embedding TTL as a multiple of ``ttl``.
        embedding_max_size: Separate capacity for the embedding store.

    Example:
        >>> config = AICacheConfig(max_size=500, ttl=900)  # embeddings: 6 hours
    """

    max_size: int = 1000
    ttl: float | None = 3600.0
    embedding_ttl_multiplier: float = 24.0
    embedding_max_size: int | None = None

    def __post_init__(self) -> None:
        """Validate settings by building both store configs."""
        if self.embedding_ttl_multiplier <= 0:
            raise ConfigurationError(
                "embedding_ttl_multiplier", expected="positive number",
                received=self.embedding_ttl_multiplier,
            )
        self.response_store_config()
        self.embedding_store_config()

    def response_store_config(self) -> CacheConfig:
        return CacheConfig(max_size=self.max_size, ttl=self.ttl)

    def embedding_store_config(self) -> CacheConfig:
        ttl = None if self.ttl is None else self.ttl * self.embedding_ttl_multiplier
        max_size = self.embedding_max_size if self.embedding_max_size is not None else self.max_size
        return CacheConfig(max_size=max_size, ttl=ttl)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> AICacheConfig:
        """
        Build a config from environment variables, falling back to defaults.

        Reads ``{prefix}CACHE_MAX_SIZE`` and ``{prefix}CACHE_TTL_SECONDS``.

        Raises:
            ConfigurationError: If a variable is set but not a valid number.
        """
        kwargs: dict[str, Any] = {}
        for field_name, env_name, parse in (
            ("max_size", "CACHE_MAX_SIZE", int),
            ("ttl", "CACHE_TTL_SECONDS", float),
        ):
            raw = os.environ.get(prefix + env_name)
            if raw is None or raw.strip() == "":
                continue
            try:
                kwargs[field_name] = parse(raw)
            except ValueError as e:
                raise ConfigurationError(
                    prefix + env_name, expected=parse.__name__, received=raw
                ) from e
        return cls(**kwargs)


@dataclass(frozen=True)
class AICacheStats:
    """Statistics for both stores."""

    responses: CacheStats
    embeddings: CacheStats

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            RESPONSE_STORE: self.responses.to_dict(),
            EMBEDDING_STORE: self.embeddings.to_dict(),
        }


class AICache:
    """
    Cache sitting in front of AI provider calls.

    Callers look a fingerprint up before calling the provider and store
    the result afterwards. A miss is never an error: the value can always
    be recomputed.

    Example:
        >>> cache = AICache(AICacheConfig(max_size=1000, ttl=3600))
        >>> key = fingerprint(model, prompt, temperature=0.2)
        >>>
        >>> content = cache.get_cached_response(key)
        >>> if content is None:
        ...     content = await scheduler.enqueue(lambda: provider.complete(prompt))
        ...     cache.cache_response(key, content, {"model": model})
    """

    def __init__(
        self,
        config: AICacheConfig | None = None,
        *,
        hooks: ObservabilityHooks | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            config: Cache configuration.
            hooks: Optional metrics registry shared by both stores.
            clock: Monotonic time source in seconds.
        """
        self.config = config or AICacheConfig()
        self._responses: TTLStore[str] = TTLStore(
            RESPONSE_STORE, self.config.response_store_config(), hooks=hooks, clock=clock
        )
        self._embeddings: TTLStore[tuple[float, ...]] = TTLStore(
            EMBEDDING_STORE, self.config.embedding_store_config(), hooks=hooks, clock=clock
        )

    @property
    def responses(self) -> TTLStore[str]:
        return self._responses

    @property
    def embeddings(self) -> TTLStore[tuple[float, ...]]:
        return self._embeddings

    def get_cached_response(self, key: str) -> str | None:
        """
        Get cached response content.

        Returns:
            The content, or None if absent or expired.
        """
        return self._responses.get(key)

    def get_response_entry(self, key: str) -> CacheEntry[str] | None:
        """Get the full response entry (content, timestamp and metadata)."""
        return self._responses.get_entry(key)

    def cache_response(
        self,
        key: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Store response content, evicting the least recently used entry if full.

        Args:
            key: Fingerprint of the request.
            content: Generated text.
            metadata: Optional caller-defined data (model, token counts, ...).

        Raises:
            TypeError: If ``content`` is not a string.
        """
        if not isinstance(content, str):
            raise TypeError(
                f"Response content must be str, got {type(content).__name__}"
            )
        self._responses.set(key, content, metadata=metadata)
        logger.debug(f"Cached response: key={key} chars={len(content)}")

    def get_cached_embedding(self, key: str) -> list[float] | None:
        """
        Get a cached embedding vector.

        Returns:
            A fresh list of floats, or None if absent or expired.
        """
        vector = self._embeddings.get(key)
        if vector is None:
            return None
        return list(vector)

    def cache_embedding(self, key: str, vector: Sequence[float]) -> None:
        """
        Store an embedding vector.

        The vector is copied, so later changes to the caller's list do not
        affect the cached value.
        """
        values = tuple(float(x) for x in vector)
        self._embeddings.set(key, values)
        logger.debug(f"Cached embedding: key={key} dims={len(values)}")

    def clear_response_cache(self) -> int:
        """Remove every response entry. Returns the number removed."""
        return self._responses.clear()

    def clear_embedding_cache(self) -> int:
        """Remove every embedding entry. Returns the number removed."""
        return self._embeddings.clear()

    def clear_all(self) -> int:
        """Empty both stores. Returns the number of entries removed."""
        count = self.clear_response_cache() + self.clear_embedding_cache()
        logger.info(f"AI cache cleared ({count} entries)")
        return count

    def cleanup_expired(self) -> int:
        """Physically purge expired entries from both stores."""
        return self._responses.cleanup_expired() + self._embeddings.cleanup_expired()

    def get_stats(self) -> AICacheStats:
        """Get cumulative statistics for both stores. Does not reset counters."""
        return AICacheStats(
            responses=self._responses.get_stats(),
            embeddings=self._embeddings.get_stats(),
        )
