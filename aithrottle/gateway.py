"""
Cache-then-schedule composition for AI provider calls.

The scheduler and the cache are independent; ``AIRequestGateway`` wires
them into the usual flow: look the fingerprint up, on a miss run the
provider call through the scheduler, then store the result.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from aithrottle.caching import AICache
from aithrottle.scheduling import AdmissionScheduler

logger = logging.getLogger(__name__)


class AIRequestGateway:
    """
    Single entry point for throttled, cached provider calls.

    Create one at application startup and pass it to the services that
    talk to AI providers.

    Example:
        >>> gateway = AIRequestGateway(
        ...     AdmissionScheduler(SchedulerConfig(max_concurrent_requests=5)),
        ...     AICache(AICacheConfig(ttl=3600)),
        ... )
        >>>
        >>> key = fingerprint("gpt-4o", prompt, temperature=0.2)
        >>> text = await gateway.complete(key, lambda: openai_chat(prompt), priority=10)
        >>>
        >>> vector = await gateway.embed(fingerprint(chunk), lambda: openai_embed(chunk))
    """

    def __init__(
        self,
        scheduler: AdmissionScheduler | None = None,
        cache: AICache | None = None,
    ) -> None:
        self.scheduler = scheduler or AdmissionScheduler()
        self.cache = cache or AICache()

    async def complete(
        self,
        key: str,
        work: Callable[[], Awaitable[str]],
        priority: int = 0,
        *,
        metadata: dict[str, Any] | None = None,
        use_cache: bool = True,
    ) -> str:
        """
        Get generated text for a request fingerprint.

        Args:
            key: Fingerprint of the request.
            work: Provider call producing the text, run on a cache miss.
            priority: Scheduler priority for the provider call.
            metadata: Stored with the cached response.
            use_cache: When False, neither read nor write the cache.

        Returns:
            The cached or freshly generated text. A provider result that is
            not a ``str`` is returned as-is and not cached.

        Raises:
            Exception: Whatever the provider call raised; nothing is cached.
            RequestCancelledError: If the call was dropped before admission.
        """
        if use_cache:
            cached = self.cache.get_cached_response(key)
            if cached is not None:
                logger.debug(f"Response cache hit: key={key}")
                return cached

        content = await self.scheduler.enqueue(
            work, priority, metadata={"cache_key": key, "kind": "completion"}
        )

        if use_cache:
            if isinstance(content, str):
                self.cache.cache_response(key, content, metadata)
            else:
                logger.warning(
                    f"Not caching non-str response for key={key}: {type(content).__name__}"
                )
        return content

    async def embed(
        self,
        key: str,
        work: Callable[[], Awaitable[Sequence[float]]],
        priority: int = 0,
        *,
        use_cache: bool = True,
    ) -> list[float]:
        """
        Get an embedding vector for a fingerprint.

        Args:
            key: Fingerprint of the input text.
            work: Provider call producing the vector, run on a cache miss.
            priority: Scheduler priority for the provider call.
            use_cache: When False, neither read nor write the cache.

        Returns:
            The embedding as a list of floats.
        """
        if use_cache:
            cached = self.cache.get_cached_embedding(key)
            if cached is not None:
                logger.debug(f"Embedding cache hit: key={key}")
                return cached

        vector = await self.scheduler.enqueue(
            work, priority, metadata={"cache_key": key, "kind": "embedding"}
        )
        result = [float(x) for x in vector]

        if use_cache:
            self.cache.cache_embedding(key, result)
        return result

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler and cache statistics."""
        return {
            "scheduler": self.scheduler.get_stats().to_dict(),
            "cache": self.cache.get_stats().to_dict(),
        }

    async def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        """Shut the scheduler down. Cached entries are left in place."""
        await self.scheduler.shutdown(wait=wait, timeout=timeout)

    async def __aenter__(self) -> AIRequestGateway:
        self.scheduler.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown(wait=True)
