"""
Pending-request queue for the admission scheduler.

Requests are ordered by priority (higher value first) and, within one
priority, by the order in which they were pushed.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

Work = Callable[[], Union[Awaitable[T], T]]


@dataclass(order=True)
class QueuedRequest(Generic[T]):
    """
    A unit of work waiting for admission.

    Attributes:
        work: Zero-argument callable producing the result (usually a
            coroutine function wrapping a provider call).
        priority: Signed priority; higher values are admitted first.
        id: Unique identifier for the request.
        future: Future settled with the work's result or error.
        metadata: Caller-defined key-value data carried with the request.
        sequence: Push order assigned by the queue, used as tie-breaker.
        enqueued_at: Monotonic timestamp of creation.

    Example:
        >>> request = QueuedRequest(work=fetch_completion, priority=5)
    """

    # Heap key: (-priority, sequence) so higher priority, then older, pops first
    sort_key: tuple[int, int] = field(init=False, repr=False, compare=True)

    work: Work = field(compare=False)
    priority: int = field(default=0, compare=False)
    id: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)
    future: asyncio.Future[T] | None = field(default=None, compare=False, repr=False)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)
    sequence: int = field(default=0, compare=False)
    enqueued_at: float = field(default_factory=time.monotonic, compare=False)

    def __post_init__(self) -> None:
        self._update_sort_key()

    def _update_sort_key(self) -> None:
        self.sort_key = (-self.priority, self.sequence)

    @property
    def is_settled(self) -> bool:
        """True once the caller's future has a result, an error or was cancelled."""
        return self.future is not None and self.future.done()

    def age_seconds(self) -> float:
        """Get the age of this request in seconds."""
        return time.monotonic() - self.enqueued_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "priority": self.priority,
            "sequence": self.sequence,
            "age_seconds": self.age_seconds(),
            "settled": self.is_settled,
            "metadata": self.metadata,
        }


class PendingQueue(Generic[T]):
    """
    Priority queue of pending requests.

    Higher ``priority`` values are served first; requests of equal
    priority are served in push order. The queue is owned by a single
    scheduler running on one event loop and does no locking of its own.

    Example:
        >>> queue = PendingQueue()
        >>> queue.push(QueuedRequest(work=low, priority=1))
        >>> queue.push(QueuedRequest(work=high, priority=5))
        >>> queue.pop().priority
        5
    """

    def __init__(self) -> None:
        self._heap: list[QueuedRequest[T]] = []
        self._request_map: dict[str, QueuedRequest[T]] = {}
        self._counter = itertools.count()

        # Statistics
        self._total_pushed = 0
        self._total_popped = 0
        self._total_removed = 0

    def push(self, request: QueuedRequest[T]) -> None:
        """
        Add a request behind every queued request of equal or higher priority.

        Raises:
            ValueError: If a request with the same ID is already queued.
        """
        if request.id in self._request_map:
            raise ValueError(f"Request with ID {request.id} already in queue")

        request.sequence = next(self._counter)
        request._update_sort_key()
        heapq.heappush(self._heap, request)
        self._request_map[request.id] = request
        self._total_pushed += 1

    def pop(self) -> QueuedRequest[T] | None:
        """Remove and return the head of the queue, or None if empty."""
        if not self._heap:
            return None
        request = heapq.heappop(self._heap)
        self._request_map.pop(request.id, None)
        self._total_popped += 1
        return request

    def get_request(self, request_id: str) -> QueuedRequest[T] | None:
        """Get a queued request by ID without removing it."""
        return self._request_map.get(request_id)

    def remove(self, request_id: str) -> bool:
        """
        Remove a specific request from the queue.

        Returns:
            True if removed, False if not found.
        """
        request = self._request_map.pop(request_id, None)
        if request is None:
            return False
        self._heap.remove(request)
        heapq.heapify(self._heap)
        self._total_removed += 1
        return True

    def drain(self) -> list[QueuedRequest[T]]:
        """
        Remove every request in one step.

        Returns:
            The removed requests in admission order.
        """
        drained = sorted(self._heap)
        self._heap.clear()
        self._request_map.clear()
        self._total_removed += len(drained)
        return drained

    def size_by_priority(self) -> dict[int, int]:
        """Get queue size broken down by priority value."""
        counts: dict[int, int] = {}
        for request in self._heap:
            counts[request.priority] = counts.get(request.priority, 0) + 1
        return counts

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        return {
            "current_size": len(self._heap),
            "total_pushed": self._total_pushed,
            "total_popped": self._total_popped,
            "total_removed": self._total_removed,
            "size_by_priority": self.size_by_priority(),
        }

    def __iter__(self) -> Iterator[QueuedRequest[T]]:
        """Iterate over queued requests in admission order."""
        return iter(sorted(self._heap))

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._request_map
