"""Time-boxing helper for awaitables.

Every AI call in the knowledge engine runs under a per-stage deadline, and
the semantic search orchestrator additionally runs under an overall
deadline.  ``with_timeout`` wraps :func:`asyncio.wait_for` and converts the
builtin :class:`TimeoutError` into the engine's own
:class:`~src.utils.errors.OperationTimeoutError` so callers only need to
catch the application hierarchy.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from src.utils.errors import OperationTimeoutError

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], seconds: float, label: str) -> T:
    """Await *awaitable*, cancelling it after *seconds*.

    Args:
        awaitable: The coroutine or future to run.
        seconds: Deadline in seconds.
        label: Short stage name used in the error message.

    Returns:
        Whatever the awaitable returns.

    Raises:
        OperationTimeoutError: If the deadline passes first.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise OperationTimeoutError(
            message=f"{label} timed out after {seconds:g}s"
        ) from exc
