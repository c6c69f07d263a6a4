"""Retry logic for remote record store operations.

This module provides:
- retry_delay: Backoff delay for an error, or None if it must not be retried
- retry_async: Bounded async retry that turns exhaustion into a typed failure

A retryable error waits for the provider's suggested delay when one is
given (Retry-After); transient errors without a suggestion fall back to
exponential backoff. Errors that are neither are raised immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from cloudsync.client.api import RecordStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


def retry_delay(
    error: BaseException,
    attempt: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> float | None:
    """Compute how long to wait before retrying after an error.

    Args:
        error: The error that ended the attempt.
        attempt: Zero-based number of the failed attempt.
        initial_backoff: First exponential delay in seconds.
        max_backoff: Cap for exponential delays.
        backoff_multiplier: Growth factor per attempt.

    Returns:
        Delay in seconds, or None if the error is not recoverable.
    """
    if not isinstance(error, RecordStoreError):
        return None
    if error.retry_after is not None:
        return max(0.0, error.retry_after)
    if error.is_transient:
        return min(initial_backoff * (backoff_multiplier ** attempt), max_backoff)
    return None


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = DEFAULT_MAX_ATTEMPTS,
    on_exhausted: Callable[[BaseException], BaseException] | None = None,
    description: str = "operation",
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
) -> T:
    """Run an async operation, retrying recoverable failures.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        attempts: Maximum number of attempts (including the first).
        on_exhausted: Builds the exception raised when the last attempt
            fails with a recoverable error. Defaults to re-raising it.
        description: Name used in log messages.
        initial_backoff: First exponential delay in seconds.
        max_backoff: Cap for exponential delays.

    Returns:
        Result of the operation.

    Raises:
        The operation's error if it is not recoverable, or the
        on_exhausted error once all attempts failed.
    """
    for attempt in range(attempts):
        try:
            return await operation()
        except RecordStoreError as e:
            delay = retry_delay(e, attempt, initial_backoff, max_backoff)
            if delay is None:
                logger.error("%s failed with unrecoverable error: %s", description, e)
                raise

            if attempt == attempts - 1:
                logger.error("All %d attempts of %s failed: %s", attempts, description, e)
                if on_exhausted is not None:
                    raise on_exhausted(e) from e
                raise

            logger.warning(
                "Attempt %d/%d of %s failed: %s. Retrying in %.1fs...",
                attempt + 1,
                attempts,
                description,
                e,
                delay,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected retry loop exit")
