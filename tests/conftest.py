"""
Pytest fixtures for aithrottle tests.

Provides common fixtures used across all test modules.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from aithrottle.caching import AICache, AICacheConfig
from aithrottle.observability import InMemoryMetricHook, ObservabilityHooks


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll until ``predicate`` is true, failing the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.001)


# ============================================================================
# Cache Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def small_cache(clock: FakeClock) -> AICache:
    """Create a cache with 10 entries and a 1 second response TTL."""
    return AICache(AICacheConfig(max_size=10, ttl=1.0), clock=clock)


# ============================================================================
# Observability Fixtures
# ============================================================================


@pytest.fixture
def memory_hook() -> InMemoryMetricHook:
    """Create an in-memory metric hook."""
    return InMemoryMetricHook()


@pytest.fixture
def hooks(memory_hook: InMemoryMetricHook) -> ObservabilityHooks:
    """Create a hooks registry feeding the in-memory hook."""
    return ObservabilityHooks([memory_hook])
