"""Single-flight task serializer.

This module provides:
- SerialTasks: runs units of async work strictly one after another
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SerialTasks(Generic[T]):
    """Chains each unit of work behind the previous one.

    A new unit starts only after the previous unit finished, whatever
    its outcome (result, exception or cancellation). Cancelling the
    caller awaiting add() cancels its own unit; units queued behind it
    still run once it has stopped.

    Usage:
        serializer = SerialTasks()
        result = await serializer.add(engine.perform_sync)
    """

    def __init__(self) -> None:
        self._previous: asyncio.Task[T] | None = None

    @property
    def busy(self) -> bool:
        """Whether a unit of work is running or waiting."""
        return self._previous is not None and not self._previous.done()

    async def add(self, block: Callable[[], Awaitable[T]]) -> T:
        """Queue a unit of work and wait for its result.

        Args:
            block: Zero-argument coroutine factory.

        Returns:
            What the unit returned.

        Raises:
            Whatever the unit raised, or CancelledError if cancelled.
        """
        previous = self._previous

        async def run() -> T:
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            return await block()

        task: asyncio.Task[T] = asyncio.get_running_loop().create_task(run())
        task.add_done_callback(_consume_result)
        self._previous = task
        # Awaiting the task directly forwards our cancellation to it
        return await task


def _consume_result(task: asyncio.Task[object]) -> None:
    # The caller of add() may already be gone
    if not task.cancelled():
        task.exception()
