"""Caller-side retry policy for guarded writes that lose a race."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from action_gate.infrastructure.state_store import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_on_conflict(operation: Callable[[], Awaitable[T]], attempts: int = 3) -> T:
    """
    Await operation() until it completes without ConflictError.
    Each attempt must re-read state itself. Re-raises the last conflict.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except ConflictError as e:
            if attempt == attempts:
                raise
            logger.info("Conflict on attempt %d/%d, re-reading: %s", attempt, attempts, e)
    raise AssertionError("unreachable")
