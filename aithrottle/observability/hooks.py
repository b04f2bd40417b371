"""
Metrics hooks for aithrottle.

The scheduler and the cache report what they do through an
``ObservabilityHooks`` instance handed to them at construction. The
library ships no metrics backend; implement ``MetricHook`` to forward
to Prometheus, StatsD, OpenTelemetry, etc.

Quick Start:
    >>> from aithrottle.observability import ObservabilityHooks, InMemoryMetricHook
    >>> from aithrottle.scheduling import AdmissionScheduler
    >>>
    >>> hooks = ObservabilityHooks()
    >>> memory_hook = InMemoryMetricHook()
    >>> hooks.add_metric_hook(memory_hook)
    >>>
    >>> scheduler = AdmissionScheduler(hooks=hooks)
    >>> await scheduler.enqueue(call_provider)
    >>> memory_hook.get_counter("aithrottle.scheduler.completed")
    1.0

Integration with Prometheus:
    >>> from prometheus_client import Counter
    >>>
    >>> class PrometheusMetricHook:
    ...     def __init__(self):
    ...         self.cache_hits = Counter(
    ...             "aithrottle_cache_hits_total", "Cache hits", ["store"]
    ...         )
    ...
    ...     def increment(self, name, value=1.0, tags=None):
    ...         if name == "aithrottle.cache.hits":
    ...             self.cache_hits.labels(**(tags or {})).inc(value)
    ...
    ...     def gauge(self, name, value, tags=None): pass
    ...     def histogram(self, name, value, tags=None): pass
    ...     def timing(self, name, duration_ms, tags=None): pass
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Types of metrics that can be emitted."""

    COUNTER = "counter"
    """A monotonically increasing counter."""

    GAUGE = "gauge"
    """A value that can go up or down."""

    HISTOGRAM = "histogram"
    """Distribution of values."""

    TIMING = "timing"
    """Duration measurement in milliseconds."""


@runtime_checkable
class MetricHook(Protocol):
    """
    Protocol for metric backends.

    Example:
        >>> class MyMetricHook:
        ...     def increment(self, name, value=1.0, tags=None): ...
        ...     def gauge(self, name, value, tags=None): ...
        ...     def histogram(self, name, value, tags=None): ...
        ...     def timing(self, name, duration_ms, tags=None): ...
    """

    def increment(self, name: str, value: float = 1.0, tags: dict[str, Any] | None = None) -> None:
        """Increment a counter metric."""
        ...

    def gauge(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        """Set a gauge metric."""
        ...

    def histogram(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        """Record a value in a histogram."""
        ...

    def timing(self, name: str, duration_ms: float, tags: dict[str, Any] | None = None) -> None:
        """Record a duration in milliseconds."""
        ...


class LoggingMetricHook:
    """
    Hook that writes every metric to a logger (development and debugging).

    Example:
        >>> import logging
        >>> logging.basicConfig(level=logging.DEBUG)
        >>> hook = LoggingMetricHook()
        >>> hook.increment("aithrottle.cache.hits", 1.0, {"store": "responses"})
        DEBUG:aithrottle.metrics:COUNTER aithrottle.cache.hits=1.0 tags={'store': 'responses'}
    """

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.DEBUG):
        self.logger = logger or logging.getLogger("aithrottle.metrics")
        self.level = level

    def increment(self, name: str, value: float = 1.0, tags: dict[str, Any] | None = None) -> None:
        self.logger.log(self.level, f"COUNTER {name}={value} tags={tags}")

    def gauge(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        self.logger.log(self.level, f"GAUGE {name}={value} tags={tags}")

    def histogram(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        self.logger.log(self.level, f"HISTOGRAM {name}={value} tags={tags}")

    def timing(self, name: str, duration_ms: float, tags: dict[str, Any] | None = None) -> None:
        self.logger.log(self.level, f"TIMING {name}={duration_ms}ms tags={tags}")


@dataclass
class HistogramStats:
    """Summary of the values recorded for one histogram or timing."""

    count: int
    total: float
    min: float
    max: float
    avg: float

    @classmethod
    def from_values(cls, values: list[float]) -> HistogramStats | None:
        """Summarize a list of values, or return None when it is empty."""
        if not values:
            return None
        return cls(
            count=len(values),
            total=sum(values),
            min=min(values),
            max=max(values),
            avg=sum(values) / len(values),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "count": self.count,
            "total": self.total,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
        }


class InMemoryMetricHook:
    """
    In-memory metrics, mainly for tests.

    Example:
        >>> hook = InMemoryMetricHook()
        >>> hook.increment("aithrottle.cache.hits", tags={"store": "responses"})
        >>> hook.get_counter("aithrottle.cache.hits", {"store": "responses"})
        1.0
    """

    def __init__(self):
        self.counters: dict[str, float] = defaultdict(float)
        self.gauges: dict[str, float] = {}
        self.histograms: dict[str, list[float]] = defaultdict(list)
        self.timings: dict[str, list[float]] = defaultdict(list)

    def _make_key(self, name: str, tags: dict[str, Any] | None) -> str:
        """Create a unique key from metric name and tags."""
        if not tags:
            return name
        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}[{tag_str}]"

    def increment(self, name: str, value: float = 1.0, tags: dict[str, Any] | None = None) -> None:
        self.counters[self._make_key(name, tags)] += value

    def gauge(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        self.gauges[self._make_key(name, tags)] = value

    def histogram(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        self.histograms[self._make_key(name, tags)].append(value)

    def timing(self, name: str, duration_ms: float, tags: dict[str, Any] | None = None) -> None:
        self.timings[self._make_key(name, tags)].append(duration_ms)

    def get_counter(self, name: str, tags: dict[str, Any] | None = None) -> float:
        """
        Get the current value of a counter.

        Returns:
            The counter value, or 0.0 if it was never incremented.
        """
        return self.counters.get(self._make_key(name, tags), 0.0)

    def get_gauge(self, name: str, tags: dict[str, Any] | None = None) -> float | None:
        """Get the last value of a gauge, or None if never set."""
        return self.gauges.get(self._make_key(name, tags))

    def get_histogram_stats(
        self, name: str, tags: dict[str, Any] | None = None
    ) -> HistogramStats | None:
        """Get statistics for a histogram, or None if empty."""
        return HistogramStats.from_values(self.histograms.get(self._make_key(name, tags), []))

    def get_timing_stats(
        self, name: str, tags: dict[str, Any] | None = None
    ) -> HistogramStats | None:
        """Get statistics for timing measurements, or None if empty."""
        return HistogramStats.from_values(self.timings.get(self._make_key(name, tags), []))

    def reset(self) -> None:
        """Reset all metrics to initial state."""
        self.counters.clear()
        self.gauges.clear()
        self.histograms.clear()
        self.timings.clear()


class ObservabilityHooks:
    """
    Registry that fans metrics out to every registered hook.

    One instance is normally created at application startup and passed
    to the scheduler and the cache. A hook that raises is logged and
    skipped; metrics never break a request.

    Example:
        >>> hooks = ObservabilityHooks([InMemoryMetricHook()])
        >>> hooks.emit_counter("aithrottle.scheduler.submitted")
    """

    def __init__(self, metric_hooks: list[MetricHook] | None = None):
        self._metric_hooks: list[MetricHook] = list(metric_hooks or [])

    def add_metric_hook(self, hook: MetricHook) -> None:
        """Register a metric hook."""
        self._metric_hooks.append(hook)

    def remove_metric_hook(self, hook: MetricHook) -> bool:
        """
        Remove a metric hook.

        Returns:
            True if the hook was removed, False if not found.
        """
        try:
            self._metric_hooks.remove(hook)
            return True
        except ValueError:
            return False

    def clear_metric_hooks(self) -> None:
        """Remove all registered metric hooks."""
        self._metric_hooks.clear()

    @property
    def metric_hooks(self) -> list[MetricHook]:
        """Get a copy of the registered metric hooks."""
        return list(self._metric_hooks)

    def emit_metric(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: dict[str, Any] | None = None,
    ) -> None:
        """Emit a metric to all registered hooks."""
        for hook in self._metric_hooks:
            try:
                if metric_type == MetricType.COUNTER:
                    hook.increment(name, value, tags)
                elif metric_type == MetricType.GAUGE:
                    hook.gauge(name, value, tags)
                elif metric_type == MetricType.HISTOGRAM:
                    hook.histogram(name, value, tags)
                elif metric_type == MetricType.TIMING:
                    hook.timing(name, value, tags)
            except Exception as e:
                logger.error(f"Metric hook {hook!r} failed for {name}: {e}")

    def emit_counter(
        self, name: str, value: float = 1.0, tags: dict[str, Any] | None = None
    ) -> None:
        self.emit_metric(MetricType.COUNTER, name, value, tags)

    def emit_gauge(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        self.emit_metric(MetricType.GAUGE, name, value, tags)

    def emit_histogram(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        self.emit_metric(MetricType.HISTOGRAM, name, value, tags)

    def emit_timing(
        self, name: str, duration_ms: float, tags: dict[str, Any] | None = None
    ) -> None:
        self.emit_metric(MetricType.TIMING, name, duration_ms, tags)


# Scheduler metrics
METRIC_SCHEDULER_SUBMITTED = "aithrottle.scheduler.submitted"
"""Counter: Requests handed to the scheduler."""

METRIC_SCHEDULER_ADMITTED = "aithrottle.scheduler.admitted"
"""Counter: Requests admitted for execution."""

METRIC_SCHEDULER_COMPLETED = "aithrottle.scheduler.completed"
"""Counter: Admitted requests whose work succeeded."""

METRIC_SCHEDULER_FAILED = "aithrottle.scheduler.failed"
"""Counter: Admitted requests whose work raised."""

METRIC_SCHEDULER_CANCELLED = "aithrottle.scheduler.cancelled"
"""Counter: Pending requests dropped before admission."""

METRIC_SCHEDULER_QUEUE_LENGTH = "aithrottle.scheduler.queue_length"
"""Gauge: Pending requests."""

METRIC_SCHEDULER_ACTIVE = "aithrottle.scheduler.active"
"""Gauge: Requests in flight."""

METRIC_SCHEDULER_WAIT = "aithrottle.scheduler.wait_ms"
"""Timing: Time a request spent pending before admission."""

METRIC_SCHEDULER_LATENCY = "aithrottle.scheduler.latency_ms"
"""Timing: Execution time of admitted work."""

# Cache metrics (tagged with ``store``)
METRIC_CACHE_HITS = "aithrottle.cache.hits"
"""Counter: Cache lookups that returned a value."""

METRIC_CACHE_MISSES = "aithrottle.cache.misses"
"""Counter: Cache lookups that found nothing usable."""

METRIC_CACHE_EVICTIONS = "aithrottle.cache.evictions"
"""Counter: Entries evicted to respect capacity."""

METRIC_CACHE_EXPIRATIONS = "aithrottle.cache.expirations"
"""Counter: Entries dropped because their TTL elapsed."""
