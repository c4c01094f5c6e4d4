"""Bounded waiting for store and transport calls."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from app.core.exceptions import TransientException

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], seconds: float, operation: str) -> T:
    """
    Await with a deadline.

    Args:
        awaitable: Store query, send call, etc.
        seconds: Deadline in seconds
        operation: Name used in the error message

    Returns:
        Result of the awaitable

    Raises:
        TransientException: If the deadline passes
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except TimeoutError:
        raise TransientException(f"{operation} timed out after {seconds}s")
