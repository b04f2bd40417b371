"""
Decorators for routing provider calls through the scheduler and cache.

Example:
    >>> scheduler = AdmissionScheduler()
    >>> cache = AICache()
    >>>
    >>> @cached_response(cache, key_params=["prompt", "temperature"])
    ... @scheduled(scheduler, priority=5)
    ... async def summarize(prompt: str, temperature: float = 0.2) -> str:
    ...     return await openai_chat(prompt, temperature=temperature)
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from aithrottle.caching import AICache, fingerprint
from aithrottle.scheduling import AdmissionScheduler

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def scheduled(
    scheduler: AdmissionScheduler,
    priority: int = 0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """
    Run every call of an async function through a scheduler.

    Args:
        scheduler: Scheduler that admits the calls.
        priority: Priority used for every call.

    Returns:
        A decorator function.

    Raises:
        TypeError: If the decorated function is not a coroutine function.

    Example:
        >>> @scheduled(scheduler, priority=10)
        ... async def chat(prompt: str) -> str:
        ...     return await openai_chat(prompt)
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"@scheduled requires an async function, got {func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await scheduler.enqueue(functools.partial(func, *args, **kwargs), priority)

        return wrapper

    return decorator


def cached_response(
    cache: AICache,
    key_params: list[str] | None = None,
) -> Callable[[Callable[P, Awaitable[str]]], Callable[P, Awaitable[str]]]:
    """
    Memoize an async text-producing function in the response store.

    The cache key is the ``fingerprint`` of the function's qualified name
    and its bound arguments (defaults applied). A leading ``self`` or
    ``cls`` is left out, so all instances share entries. Other arguments
    without a stable ``str()`` (clients, sessions) should be excluded
    through ``key_params``. Results that are not ``str`` are returned
    but not cached.

    Args:
        cache: AI cache to use.
        key_params: Only these parameters contribute to the key.

    Returns:
        A decorator function.

    Raises:
        TypeError: If the decorated function is not a coroutine function.

    Example:
        >>> @cached_response(cache, key_params=["prompt"])
        ... async def summarize(prompt: str, request_id: str) -> str:
        ...     return await openai_chat(prompt)
        >>>
        >>> await summarize("Q3 report", request_id="a")  # provider call
        >>> await summarize("Q3 report", request_id="b")  # cache hit
    """

    def decorator(func: Callable[P, Awaitable[str]]) -> Callable[P, Awaitable[str]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"@cached_response requires an async function, got {func.__name__}")

        sig = inspect.signature(func)
        name = func.__qualname__

        # self/cls never contributes to the key
        params = list(sig.parameters)
        receiver = params[0] if params and params[0] in ("self", "cls") else None

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> str:
            bound = sig.bind(*args, **kwargs)
            bound.apply_defaults()
            all_args = {k: v for k, v in bound.arguments.items() if k != receiver}

            if key_params:
                cache_args = {k: v for k, v in all_args.items() if k in key_params}
            else:
                cache_args = all_args

            key = fingerprint(name, **cache_args)
            cached = cache.get_cached_response(key)
            if cached is not None:
                logger.debug(f"Cache hit for {name}")
                return cached

            content = await func(*args, **kwargs)
            if not isinstance(content, str):
                logger.warning(f"Not caching non-str result of {name}: {type(content).__name__}")
                return content
            cache.cache_response(key, content, {"function": name})
            logger.debug(f"Cached result for {name}")
            return content

        return wrapper

    return decorator
