"""Network reachability middleware."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from cloudsync.client.sync.middlewares.base import PollingMiddleware
from cloudsync.core.config import DEFAULT_NETWORK_CHECK_INTERVAL

logger = logging.getLogger(__name__)


class NetworkStatusMiddleware(PollingMiddleware[bool]):
    """Publishes network availability changes.

    Reachability is decided by an async probe, typically the record
    store's health check. A probe that raises counts as unavailable.

    Usage:
        network = NetworkStatusMiddleware(client.health_check)
        updates = network.updates.subscribe()
        await network.start()
        async for available in updates:
            ...
    """

    name = "NetworkStatusMiddleware"

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]],
        interval: float = DEFAULT_NETWORK_CHECK_INTERVAL,
    ) -> None:
        super().__init__(interval)
        self._probe = probe
        self._available: bool | None = None

    @property
    def is_network_available(self) -> bool:
        return bool(self._available)

    async def _sample(self) -> bool:
        try:
            return bool(await self._probe())
        except Exception as e:
            logger.warning("Network probe failed: %s", e)
            return False

    def _apply(self, value: bool) -> None:
        previous = self._available
        self._available = value
        if previous is None:
            logger.debug("Initial network status: %s", "available" if value else "unavailable")
            return
        if previous == value:
            return
        logger.info("Network status changed: %s", "available" if value else "unavailable")
        self._stream.publish(value)
