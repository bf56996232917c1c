"""Uniform client-side timeout wrapper for remote calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F")


async def with_timeout(
    awaitable: Awaitable[T],
    seconds: float,
    on_timeout: Callable[[], F],
    operation: str,
) -> T | F:
    """
    Await `awaitable`, resolving to a fallback outcome if it takes too long.

    The pending call is cancelled from the caller's point of view; work that
    was already handed to a thread keeps running and its result is dropped.

    Args:
        awaitable: Coroutine or future performing the remote call
        seconds: Timeout in seconds
        on_timeout: Factory for the outcome to return on timeout
        operation: Operation name used in log records

    Returns:
        The awaited result, or `on_timeout()` if the timeout elapsed

    Example:
        >>> profile = await with_timeout(
        ...     store.get_profile_row("u1"),
        ...     8.0,
        ...     on_timeout=lambda: ProfileFetchError(subject_id="u1", kind=AuthErrorKind.TIMEOUT),
        ...     operation="fetch_profile",
        ... )
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except TimeoutError:
        logger.warning(
            f"{operation} timed out after {seconds}s",
            extra={"error_type": "client_timeout", "operation": operation, "timeout": seconds},
        )
        return on_timeout()
