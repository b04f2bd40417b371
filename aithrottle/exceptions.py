"""
Custom exceptions for aithrottle.

This module defines the exception hierarchy for the library. Errors raised
by the caller's own work are never wrapped: they reach the caller unchanged.
Only conditions created by aithrottle itself (cancellation, shutdown,
invalid configuration) use these types.
"""

from __future__ import annotations

from typing import Any


class AIThrottleError(Exception):
    """
    Base exception for all aithrottle errors.

    Attributes:
        message: Human-readable error description.
        details: Additional context about the error.

    Example:
        >>> try:
        ...     result = await scheduler.enqueue(call_provider)
        ... except AIThrottleError as e:
        ...     logger.error(f"aithrottle error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(AIThrottleError):
    """
    Raised when a scheduler or cache is constructed with invalid settings.

    Attributes:
        config_key: The configuration key that is invalid.
        expected: Description of what was expected.
        received: What was actually received.

    Example:
        >>> raise ConfigurationError(
        ...     config_key="max_concurrent_requests",
        ...     expected="integer >= 1",
        ...     received=0,
        ... )
    """

    def __init__(
        self,
        config_key: str,
        expected: str | None = None,
        received: Any = None,
    ) -> None:
        self.config_key = config_key
        self.expected = expected
        self.received = received

        msg = f"Invalid configuration for '{config_key}'"
        if expected:
            msg += f": expected {expected}"
        if received is not None:
            msg += f", got {received!r}"

        super().__init__(msg, {
            "config_key": config_key,
            "expected": expected,
            "received": repr(received) if received is not None else None,
        })


class RequestCancelledError(AIThrottleError):
    """
    Raised into a caller's future when its request was dropped before admission.

    Requests that were already admitted are never cancelled by the
    scheduler; only pending ones can receive this error.

    Attributes:
        request_id: ID of the cancelled request.
        reason: Why the request was cancelled.
    """

    def __init__(
        self,
        request_id: str | None = None,
        reason: str = "Request cancelled",
    ) -> None:
        self.request_id = request_id
        self.reason = reason
        super().__init__(reason, {"request_id": request_id} if request_id else None)


class QueueClearedError(RequestCancelledError):
    """
    Raised into every pending request's future by ``clear_queue()``.

    Example:
        >>> try:
        ...     await scheduler.enqueue(call_provider, priority=-1)
        ... except QueueClearedError:
        ...     pass  # background work dropped by an operator
    """

    def __init__(self, request_id: str | None = None) -> None:
        super().__init__(request_id=request_id, reason="Request queue cleared")


class SchedulerClosedError(RequestCancelledError):
    """
    Raised when a request is submitted to, or still pending in, a
    scheduler that has been shut down.
    """

    def __init__(self, request_id: str | None = None) -> None:
        super().__init__(request_id=request_id, reason="Scheduler is shut down")
