"""
Admission scheduler for outbound AI provider calls.

Throttles asynchronous work so that at most ``max_concurrent_requests``
units run at once and at most ``max_requests_per_minute`` are admitted
per rate window, serving higher priorities first.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, TypeVar

from aithrottle.exceptions import (
    ConfigurationError,
    QueueClearedError,
    RequestCancelledError,
    SchedulerClosedError,
)
from aithrottle.observability.hooks import (
    METRIC_SCHEDULER_ACTIVE,
    METRIC_SCHEDULER_ADMITTED,
    METRIC_SCHEDULER_CANCELLED,
    METRIC_SCHEDULER_COMPLETED,
    METRIC_SCHEDULER_FAILED,
    METRIC_SCHEDULER_LATENCY,
    METRIC_SCHEDULER_QUEUE_LENGTH,
    METRIC_SCHEDULER_SUBMITTED,
    METRIC_SCHEDULER_WAIT,
    ObservabilityHooks,
)
from aithrottle.scheduling.priority_queue import PendingQueue, QueuedRequest, Work

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENV_PREFIX = "AITHROTTLE_"


class SchedulerState(Enum):
    """Scheduler lifecycle states."""

    IDLE = auto()
    RUNNING = auto()
    SHUTTING_DOWN = auto()
    STOPPED = auto()


@dataclass
class SchedulerConfig:
    """
    Configuration for the admission scheduler.

    Attributes:
        max_requests_per_minute: Admissions allowed per rate window.
        max_concurrent_requests: Requests allowed in flight at once.
        window_seconds: Length of the rate window. The budget is named
            "per minute" because the window defaults to 60 seconds.

    Raises:
        ConfigurationError: If a limit is below 1 or the window is not positive.

    Example:
        >>> config = SchedulerConfig(
        ...     max_requests_per_minute=120,
        ...     max_concurrent_requests=8,
        ... )
    """

    max_requests_per_minute: int = 60
    max_concurrent_requests: int = 5
    window_seconds: float = 60.0

    def __post_init__(self) -> None:
        """Validate limits."""
        for name in ("max_requests_per_minute", "max_concurrent_requests"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(name, expected="integer >= 1", received=value)
        if self.window_seconds <= 0:
            raise ConfigurationError(
                "window_seconds", expected="positive number of seconds",
                received=self.window_seconds,
            )

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> SchedulerConfig:
        """
        Build a config from environment variables, falling back to defaults.

        Reads ``{prefix}MAX_REQUESTS_PER_MINUTE``,
        ``{prefix}MAX_CONCURRENT_REQUESTS`` and ``{prefix}WINDOW_SECONDS``.

        Raises:
            ConfigurationError: If a variable is set but not a valid number.
        """
        kwargs: dict[str, Any] = {}
        for field_name, env_name, parse in (
            ("max_requests_per_minute", "MAX_REQUESTS_PER_MINUTE", int),
            ("max_concurrent_requests", "MAX_CONCURRENT_REQUESTS", int),
            ("window_seconds", "WINDOW_SECONDS", float),
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
class SchedulerStats:
    """
    Point-in-time snapshot of scheduler state.

    Advisory only: it says nothing about the outcome of any one request.
    """

    queue_length: int
    active_requests: int
    requests_this_window: int
    time_until_reset: float
    max_concurrent_requests: int
    max_requests_per_minute: int
    requests_submitted: int = 0
    requests_completed: int = 0
    requests_failed: int = 0
    requests_cancelled: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "queue_length": self.queue_length,
            "active_requests": self.active_requests,
            "requests_this_window": self.requests_this_window,
            "time_until_reset": self.time_until_reset,
            "max_concurrent_requests": self.max_concurrent_requests,
            "max_requests_per_minute": self.max_requests_per_minute,
            "requests_submitted": self.requests_submitted,
            "requests_completed": self.requests_completed,
            "requests_failed": self.requests_failed,
            "requests_cancelled": self.requests_cancelled,
        }


class AdmissionScheduler:
    """
    Priority scheduler with a concurrency limit and a per-window rate budget.

    Callers hand in zero-argument async callables; the scheduler queues
    them by priority (higher first, FIFO within a priority) and admits
    them while both a concurrency slot and rate budget are available.
    Every submitted request is settled exactly once: with the work's
    result, with the work's own exception, or with a
    ``RequestCancelledError`` if it was dropped before admission.

    Admission is performed by a single loop task that wakes whenever
    capacity may have changed: after a submit, after any admitted work
    finishes, and when the rate window resets. The admission step itself
    never suspends, so queue removal and counter updates are atomic with
    respect to every other coroutine on the loop.

    Example:
        >>> async with AdmissionScheduler(SchedulerConfig(max_concurrent_requests=2)) as s:
        ...     summary = await s.enqueue(lambda: client.complete(prompt), priority=5)
        ...     print(s.get_stats().to_dict())
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        hooks: ObservabilityHooks | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Background tasks are started by ``start()``, by entering the
        scheduler as an async context manager, or lazily on the first
        ``submit``.

        Args:
            config: Scheduler configuration.
            hooks: Optional metrics registry.
        """
        self.config = config or SchedulerConfig()
        self._hooks = hooks

        self._queue: PendingQueue[Any] = PendingQueue()
        self._active = 0
        self._requests_this_window = 0
        self._last_reset = time.monotonic()

        self._state = SchedulerState.IDLE
        self._wakeup: asyncio.Event | None = None
        self._admission_task: asyncio.Task[None] | None = None
        self._window_task: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()

        self._submitted = 0
        self._completed = 0
        self._failed = 0
        self._cancelled = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Start the admission loop and the window timer.

        Must be called from inside a running event loop. Calling it again
        on the same loop while running is a no-op. Called from a different
        loop (the previous one finished, e.g. a second ``asyncio.run``),
        the background tasks are restarted on the current loop.

        Raises:
            RuntimeError: If there is no running event loop or the
                scheduler has been shut down.
        """
        if self._state not in (SchedulerState.IDLE, SchedulerState.RUNNING):
            raise RuntimeError(f"Scheduler is {self._state.name}")

        loop = asyncio.get_running_loop()
        if self._state == SchedulerState.RUNNING:
            if self._is_bound_to(loop):
                return
            self._drop_stale(loop)

        self._wakeup = asyncio.Event()
        self._last_reset = time.monotonic()
        self._requests_this_window = 0
        self._admission_task = loop.create_task(
            self._admission_loop(), name="aithrottle-admission"
        )
        self._window_task = loop.create_task(
            self._window_loop(), name="aithrottle-window-reset"
        )
        self._state = SchedulerState.RUNNING
        # Requests may already be waiting if submit() started us
        self._wakeup.set()

        logger.info(
            f"Scheduler started (max_concurrent={self.config.max_concurrent_requests}, "
            f"max_per_window={self.config.max_requests_per_minute}, "
            f"window={self.config.window_seconds}s)"
        )

    async def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        """
        Stop the scheduler.

        Pending requests are rejected with ``SchedulerClosedError``.

        Args:
            wait: Whether to let in-flight work finish. Work still running
                after ``timeout`` (or immediately, when ``wait`` is False)
                is cancelled and its callers receive ``CancelledError``.
            timeout: Maximum seconds to wait for in-flight work.
        """
        if self._state in (SchedulerState.SHUTTING_DOWN, SchedulerState.STOPPED):
            return
        self._state = SchedulerState.SHUTTING_DOWN
        logger.info("Scheduler shutting down...")

        dropped = self._reject_pending(SchedulerClosedError)
        if dropped:
            logger.info(f"Rejected {dropped} pending requests on shutdown")

        loop = asyncio.get_running_loop()
        background = [
            t for t in (self._admission_task, self._window_task)
            if t is not None and not t.done() and t.get_loop() is loop
        ]
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)

        in_flight = [t for t in self._in_flight if t.get_loop() is loop]
        if in_flight and wait:
            _, still_running = await asyncio.wait(in_flight, timeout=timeout)
            in_flight = list(still_running)
        for task in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)

        self._state = SchedulerState.STOPPED
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self._state == SchedulerState.RUNNING

    @property
    def state(self) -> SchedulerState:
        return self._state

    async def __aenter__(self) -> AdmissionScheduler:
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        work: Work[T],
        priority: int = 0,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> asyncio.Future[T]:
        """
        Queue a unit of work and return the future it will settle.

        The request is in the pending queue when this returns; it is
        admitted by the admission loop once capacity allows. Cancelling
        the returned future while the request is still pending removes it
        from the queue.

        Args:
            work: Zero-argument callable. Coroutine functions are awaited;
                a plain callable's return value is used as the result.
            priority: Higher values are admitted first.
            metadata: Caller-defined data kept on the queued request.

        Returns:
            Future resolving to the work's result or raising its error.

        Raises:
            RuntimeError: If called without a running event loop.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()

        if self._state in (SchedulerState.SHUTTING_DOWN, SchedulerState.STOPPED):
            future.set_exception(SchedulerClosedError())
            return future
        if self._state == SchedulerState.IDLE or not self._is_bound_to(loop):
            self.start()

        request: QueuedRequest[T] = QueuedRequest(
            work=work,
            priority=priority,
            future=future,
            metadata=dict(metadata or {}),
        )
        self._queue.push(request)
        future.add_done_callback(functools.partial(self._on_future_done, request.id))
        self._submitted += 1

        logger.debug(
            f"Enqueued request {request.id} (priority={priority}, "
            f"queue_length={len(self._queue)})"
        )
        self._emit_counter(METRIC_SCHEDULER_SUBMITTED)
        self._emit_gauges()
        self._signal()
        return future

    async def enqueue(
        self,
        work: Work[T],
        priority: int = 0,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> T:
        """
        Queue a unit of work and wait for its result.

        Args:
            work: Zero-argument callable producing the result.
            priority: Higher values are admitted first.
            metadata: Caller-defined data kept on the queued request.

        Returns:
            The work's result.

        Raises:
            Exception: Whatever the work raised, unchanged.
            RequestCancelledError: If the request was dropped before
                admission (``clear_queue()`` or ``shutdown()``).
        """
        return await self.submit(work, priority, metadata=metadata)

    def clear_queue(self) -> int:
        """
        Reject every pending request with ``QueueClearedError``.

        In-flight requests are not affected and settle normally.

        Returns:
            Number of requests cancelled.
        """
        count = self._reject_pending(QueueClearedError)
        logger.info(f"Request queue cleared ({count} pending requests cancelled)")
        return count

    def update_limits(
        self,
        max_requests_per_minute: int | None = None,
        max_concurrent_requests: int | None = None,
    ) -> None:
        """
        Change limits at runtime.

        Raising a limit takes effect immediately; lowering one never
        interrupts work that is already in flight.

        Raises:
            ConfigurationError: If a new limit is invalid.
        """
        self.config = SchedulerConfig(
            max_requests_per_minute=(
                self.config.max_requests_per_minute
                if max_requests_per_minute is None else max_requests_per_minute
            ),
            max_concurrent_requests=(
                self.config.max_concurrent_requests
                if max_concurrent_requests is None else max_concurrent_requests
            ),
            window_seconds=self.config.window_seconds,
        )
        logger.info(
            f"Scheduler limits updated (max_concurrent={self.config.max_concurrent_requests}, "
            f"max_per_window={self.config.max_requests_per_minute})"
        )
        self._signal()

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_stats(self) -> SchedulerStats:
        """
        Get a snapshot of scheduler state. Does not modify anything.

        Returns:
            SchedulerStats with queue length, in-flight count, admissions in
            the current window and seconds until the window resets.
        """
        elapsed = time.monotonic() - self._last_reset
        return SchedulerStats(
            queue_length=len(self._queue),
            active_requests=self._active,
            requests_this_window=self._requests_this_window,
            time_until_reset=max(0.0, self.config.window_seconds - elapsed),
            max_concurrent_requests=self.config.max_concurrent_requests,
            max_requests_per_minute=self.config.max_requests_per_minute,
            requests_submitted=self._submitted,
            requests_completed=self._completed,
            requests_failed=self._failed,
            requests_cancelled=self._cancelled,
        )

    def get_pending(self) -> list[dict[str, Any]]:
        """Describe pending requests in the order they would be admitted."""
        return [request.to_dict() for request in self._queue]

    def get_queue_stats(self) -> dict[str, Any]:
        """
        Get pending-queue statistics.

        Returns:
            Current size, lifetime push/pop/remove totals and the pending
            count per priority value.
        """
        return self._queue.get_stats()

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def active_count(self) -> int:
        return self._active

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_bound_to(self, loop: asyncio.AbstractEventLoop) -> bool:
        """Check that the admission loop is alive on ``loop``."""
        task = self._admission_task
        return task is not None and not task.done() and task.get_loop() is loop

    def _drop_stale(self, loop: asyncio.AbstractEventLoop) -> None:
        """
        Forget state tied to a previous event loop.

        Futures created on another loop cannot be settled from this one;
        those requests are dropped and counted as cancelled.
        """
        stale = 0
        kept: list[QueuedRequest[Any]] = []
        for request in self._queue.drain():
            if request.future is not None and request.future.get_loop() is loop:
                kept.append(request)
            else:
                stale += 1
                self._record_cancelled(request)
        for request in kept:
            self._queue.push(request)

        for task in [t for t in self._in_flight if t.get_loop() is not loop]:
            self._in_flight.discard(task)
            if not task.done():
                self._active -= 1

        logger.warning(
            f"Scheduler event loop changed; restarting background tasks "
            f"({stale} requests from the previous loop dropped)"
        )

    def _signal(self) -> None:
        """Tell the admission loop that capacity may have changed."""
        if self._wakeup is not None:
            self._wakeup.set()

    def _has_capacity(self) -> bool:
        return (
            self._active < self.config.max_concurrent_requests
            and self._requests_this_window < self.config.max_requests_per_minute
        )

    async def _admission_loop(self) -> None:
        assert self._wakeup is not None
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            self._admit_ready()

    def _admit_ready(self) -> None:
        """Admit queued requests until the queue or the capacity runs out."""
        loop = asyncio.get_running_loop()
        while self._queue and self._has_capacity():
            request = self._queue.pop()
            if request is None:
                break
            if request.is_settled:
                # Cancelled by its caller; the done callback has not run yet
                self._record_cancelled(request)
                continue

            self._active += 1
            self._requests_this_window += 1
            logger.debug(
                f"Admitted request {request.id} (priority={request.priority}, "
                f"active={self._active}, window_count={self._requests_this_window})"
            )
            self._emit_counter(METRIC_SCHEDULER_ADMITTED)
            self._emit_timing(METRIC_SCHEDULER_WAIT, request.age_seconds() * 1000)

            task = loop.create_task(self._execute(request))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

        self._emit_gauges()

    async def _execute(self, request: QueuedRequest[Any]) -> None:
        """Run admitted work and settle the caller's future."""
        future = request.future
        assert future is not None
        started = time.monotonic()
        try:
            result = request.work()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            self._failed += 1
            logger.warning(f"Request {request.id} failed: {type(e).__name__}: {e}")
            self._emit_counter(METRIC_SCHEDULER_FAILED)
            if not future.done():
                future.set_exception(e)
        else:
            self._completed += 1
            logger.debug(f"Request {request.id} completed")
            self._emit_counter(METRIC_SCHEDULER_COMPLETED)
            if not future.done():
                future.set_result(result)
        finally:
            self._active -= 1
            self._emit_timing(METRIC_SCHEDULER_LATENCY, (time.monotonic() - started) * 1000)
            self._signal()

    async def _window_loop(self) -> None:
        """Reset the rate budget at the end of every window."""
        while True:
            deadline = self._last_reset + self.config.window_seconds
            await asyncio.sleep(max(0.0, deadline - time.monotonic()))
            self._reset_window()

    def _reset_window(self) -> None:
        used = self._requests_this_window
        self._requests_this_window = 0
        self._last_reset = time.monotonic()
        logger.debug(f"Rate window reset ({used} admissions in previous window)")
        self._signal()

    def _on_future_done(self, request_id: str, future: asyncio.Future[Any]) -> None:
        """Drop a pending request whose caller cancelled it."""
        if not future.cancelled():
            return
        request = self._queue.get_request(request_id)
        if request is not None and self._queue.remove(request_id):
            self._record_cancelled(request)
            self._emit_gauges()

    def _record_cancelled(self, request: QueuedRequest[Any]) -> None:
        self._cancelled += 1
        logger.debug(f"Request {request.id} cancelled before admission")
        self._emit_counter(METRIC_SCHEDULER_CANCELLED)

    def _reject_pending(self, error_type: type[RequestCancelledError]) -> int:
        """Reject all pending requests in a single pass."""
        count = 0
        for request in self._queue.drain():
            if request.is_settled or (
                request.future is not None and request.future.get_loop().is_closed()
            ):
                self._record_cancelled(request)
            elif request.future is not None:
                request.future.set_exception(error_type(request.id))
                count += 1
        if count:
            self._cancelled += count
            self._emit_counter(METRIC_SCHEDULER_CANCELLED, float(count))
        self._emit_gauges()
        return count

    def _emit_counter(self, name: str, value: float = 1.0) -> None:
        if self._hooks is not None:
            self._hooks.emit_counter(name, value)

    def _emit_timing(self, name: str, duration_ms: float) -> None:
        if self._hooks is not None:
            self._hooks.emit_timing(name, duration_ms)

    def _emit_gauges(self) -> None:
        if self._hooks is not None:
            self._hooks.emit_gauge(METRIC_SCHEDULER_QUEUE_LENGTH, float(len(self._queue)))
            self._hooks.emit_gauge(METRIC_SCHEDULER_ACTIVE, float(self._active))
