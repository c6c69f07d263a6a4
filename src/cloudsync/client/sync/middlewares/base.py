"""Building blocks shared by the environment middlewares.

This module provides:
- SignalStream: broadcast stream of state changes with per-subscriber queues
- SignalSubscriber: async iterator over one subscriber's queue
- PollingMiddleware: base for middlewares that sample a signal periodically
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class SignalSubscriber(Generic[T]):
    """One consumer's view of a SignalStream.

    Values published after the subscriber was created are delivered in
    order; iteration ends when the stream is closed or the subscriber is.
    """

    def __init__(self, stream: SignalStream[T]) -> None:
        self._stream = stream
        self._queue: asyncio.Queue[object] = asyncio.Queue()

    def _push(self, value: object) -> None:
        self._queue.put_nowait(value)

    def close(self) -> None:
        self._stream._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> SignalSubscriber[T]:
        return self

    async def __anext__(self) -> T:
        value = await self._queue.get()
        if value is _CLOSED:
            raise StopAsyncIteration
        return value  # type: ignore[return-value]


class SignalStream(Generic[T]):
    """Broadcasts state changes to every subscriber.

    publish() must be called from the event loop thread.
    """

    def __init__(self) -> None:
        self._subscribers: list[SignalSubscriber[T]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> SignalSubscriber[T]:
        subscriber: SignalSubscriber[T] = SignalSubscriber(self)
        if self._closed:
            subscriber._push(_CLOSED)
        else:
            self._subscribers.append(subscriber)
        return subscriber

    def _unsubscribe(self, subscriber: SignalSubscriber[T]) -> None:
        with contextlib.suppress(ValueError):
            self._subscribers.remove(subscriber)

    def publish(self, value: T) -> None:
        if self._closed:
            return
        for subscriber in list(self._subscribers):
            subscriber._push(value)

    def close(self) -> None:
        """End iteration for all current and future subscribers."""
        if self._closed:
            return
        self._closed = True
        for subscriber in self._subscribers:
            subscriber._push(_CLOSED)
        self._subscribers.clear()


class PollingMiddleware(Generic[T]):
    """Samples one environmental signal in its own monitoring task.

    Subclasses implement _sample(). The monitoring loop publishes a value
    only when it differs from the last known one, and sleeps between
    samples in a way stop_monitoring() and wake() can interrupt.
    """

    name = "middleware"

    def __init__(self, interval: float) -> None:
        self._interval = interval
        self._stream: SignalStream[T] = SignalStream()
        self._task: asyncio.Task[None] | None = None
        self._wake_event: asyncio.Event | None = None
        self._should_run = False

    @property
    def updates(self) -> SignalStream[T]:
        return self._stream

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _sample(self) -> T | None:
        raise NotImplementedError

    def _apply(self, value: T) -> None:
        """Record a fresh sample; publish it if it is a change."""
        raise NotImplementedError

    async def refresh(self) -> None:
        """Take one sample now."""
        value = await self._sample()
        if value is not None:
            self._apply(value)

    async def start(self) -> None:
        """Take an initial sample and start the monitoring task."""
        if self.running:
            logger.warning("%s already running", self.name)
            return
        self._should_run = True
        self._wake_event = asyncio.Event()
        await self.refresh()
        self._task = asyncio.get_running_loop().create_task(
            self._monitor(), name=self.name
        )
        logger.debug("%s monitoring started", self.name)

    def wake(self) -> None:
        """Interrupt the current sleep and sample immediately."""
        if self._wake_event is not None:
            self._wake_event.set()

    async def stop_monitoring(self) -> None:
        self._should_run = False
        self.wake()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._stream.close()
        logger.debug("%s monitoring stopped", self.name)

    async def _monitor(self) -> None:
        while self._should_run:
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=self._interval)  # type: ignore[union-attr]
            except TimeoutError:
                pass
            if not self._should_run:
                break
            self._wake_event.clear()  # type: ignore[union-attr]
            await self.refresh()
