"""
Admission scheduling for outbound AI provider calls.

This module queues asynchronous work by priority and admits it subject
to a concurrency limit and a rolling per-window request budget.

Example:
    >>> from aithrottle.scheduling import AdmissionScheduler, SchedulerConfig
    >>>
    >>> scheduler = AdmissionScheduler(SchedulerConfig(
    ...     max_requests_per_minute=60,
    ...     max_concurrent_requests=5,
    ... ))
    >>>
    >>> # Interactive requests jump ahead of background ones
    >>> answer = await scheduler.enqueue(lambda: openai_chat(prompt), priority=10)
    >>> summary = await scheduler.enqueue(lambda: openai_chat(doc), priority=0)
    >>>
    >>> print(scheduler.get_stats().to_dict())
    >>> await scheduler.shutdown()
"""

from aithrottle.scheduling.priority_queue import (
    PendingQueue,
    QueuedRequest,
    Work,
)
from aithrottle.scheduling.scheduler import (
    AdmissionScheduler,
    SchedulerConfig,
    SchedulerState,
    SchedulerStats,
)

__all__ = [
    # Priority queue
    "QueuedRequest",
    "PendingQueue",
    "Work",
    # Scheduler
    "AdmissionScheduler",
    "SchedulerConfig",
    "SchedulerState",
    "SchedulerStats",
]
