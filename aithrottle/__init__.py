"""
aithrottle: admission control and caching for AI provider calls.

aithrottle keeps an application's outbound calls to AI providers within
a concurrency limit and a per-minute request budget, serves urgent
requests first, and avoids repeat calls through a response/embedding
cache.

Basic Usage:
    >>> from aithrottle import (
    ...     AdmissionScheduler, SchedulerConfig,
    ...     AICache, AICacheConfig,
    ...     AIRequestGateway, fingerprint,
    ... )
    >>>
    >>> # Create once at startup
    >>> gateway = AIRequestGateway(
    ...     AdmissionScheduler(SchedulerConfig(
    ...         max_requests_per_minute=60,
    ...         max_concurrent_requests=5,
    ...     )),
    ...     AICache(AICacheConfig(max_size=1000, ttl=3600)),
    ... )
    >>>
    >>> key = fingerprint("gemini-1.5-pro", prompt, temperature=0.4)
    >>> text = await gateway.complete(key, lambda: gemini.generate(prompt), priority=10)
"""

__version__ = "0.1.0"

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
from aithrottle.decorators import cached_response, scheduled
from aithrottle.exceptions import (
    AIThrottleError,
    ConfigurationError,
    QueueClearedError,
    RequestCancelledError,
    SchedulerClosedError,
)
from aithrottle.gateway import AIRequestGateway
from aithrottle.observability import (
    InMemoryMetricHook,
    LoggingMetricHook,
    MetricHook,
    ObservabilityHooks,
)
from aithrottle.scheduling import (
    AdmissionScheduler,
    PendingQueue,
    QueuedRequest,
    SchedulerConfig,
    SchedulerState,
    SchedulerStats,
)

__all__ = [
    "__version__",
    # Scheduling
    "AdmissionScheduler",
    "SchedulerConfig",
    "SchedulerState",
    "SchedulerStats",
    "PendingQueue",
    "QueuedRequest",
    # Caching
    "AICache",
    "AICacheConfig",
    "AICacheStats",
    "TTLStore",
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "fingerprint",
    # Composition
    "AIRequestGateway",
    "scheduled",
    "cached_response",
    # Observability
    "ObservabilityHooks",
    "MetricHook",
    "LoggingMetricHook",
    "InMemoryMetricHook",
    # Exceptions
    "AIThrottleError",
    "ConfigurationError",
    "RequestCancelledError",
    "QueueClearedError",
    "SchedulerClosedError",
]
