"""Application foreground state middleware."""

from __future__ import annotations

import logging

from cloudsync.client.sync.middlewares.base import SignalStream
from cloudsync.core.types import ApplicationState

logger = logging.getLogger(__name__)


class ApplicationStateMiddleware:
    """Publishes foreground/background transitions reported by the host.

    The host application calls did_become_active() and
    will_resign_active() from its own lifecycle hooks, on the event
    loop thread.
    """

    def __init__(self, is_active: bool = True) -> None:
        self._is_active = is_active
        self._stream: SignalStream[ApplicationState] = SignalStream()

    @property
    def is_active(self) -> bool:
        return self._is_active

    @property
    def updates(self) -> SignalStream[ApplicationState]:
        return self._stream

    def did_become_active(self) -> None:
        self._set_active(True)

    def will_resign_active(self) -> None:
        self._set_active(False)

    def _set_active(self, active: bool) -> None:
        if active == self._is_active:
            return
        self._is_active = active
        state = ApplicationState.ACTIVE if active else ApplicationState.INACTIVE
        logger.debug("Application state changed: %s", state.value)
        self._stream.publish(state)

    async def stop_monitoring(self) -> None:
        self._stream.close()
