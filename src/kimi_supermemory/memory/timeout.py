"""Race a store call against a fixed time budget.

This is a race, not a cancellation: when the budget runs out the caller gets
StoreTimeoutError, but the underlying call keeps running in the background
and its eventual result is dropped. Treat a timeout as "outcome unknown".
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from kimi_supermemory.errors import StoreTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0  # seconds

# Abandoned calls, kept referenced until they finish on their own.
_abandoned: set[asyncio.Future] = set()


def _discard(task: asyncio.Future) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned store call failed after timeout: %s", exc)
    else:
        logger.debug("Abandoned store call finished after timeout; result dropped")


async def call_with_timeout(call: Awaitable[T], timeout: float = DEFAULT_TIMEOUT) -> T:
    """Return the result of *call*, or raise StoreTimeoutError after *timeout* seconds."""
    task = asyncio.ensure_future(call)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except asyncio.TimeoutError:
        _abandoned.add(task)
        task.add_done_callback(_discard)
        logger.warning("Store call exceeded %gs budget", timeout)
        raise StoreTimeoutError(timeout) from None
