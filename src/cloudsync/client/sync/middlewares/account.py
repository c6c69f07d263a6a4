"""Remote account status middleware."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cloudsync.client.api import RecordStoreError
from cloudsync.client.sync.middlewares.base import PollingMiddleware
from cloudsync.client.sync.retry import retry_async
from cloudsync.core.config import DEFAULT_ACCOUNT_CHECK_INTERVAL, DEFAULT_RETRY_COUNT
from cloudsync.core.types import AccountStatus

if TYPE_CHECKING:
    from cloudsync.client.api import RecordStoreClient

logger = logging.getLogger(__name__)


class AccountStatusMiddleware(PollingMiddleware[AccountStatus]):
    """Publishes account status changes.

    The status is polled periodically and re-checked immediately when
    the host reports an account change via notify_account_changed().
    The first known status is published too, since going from "unknown"
    to AVAILABLE is itself a change worth syncing on.
    """

    name = "AccountStatusMiddleware"

    def __init__(
        self,
        client: RecordStoreClient,
        interval: float = DEFAULT_ACCOUNT_CHECK_INTERVAL,
        attempts: int = DEFAULT_RETRY_COUNT,
    ) -> None:
        super().__init__(interval)
        self._client = client
        self._attempts = attempts
        self._last_known_status: AccountStatus | None = None

    @property
    def last_known_status(self) -> AccountStatus | None:
        return self._last_known_status

    async def refresh_status(self) -> AccountStatus | None:
        await self.refresh()
        return self._last_known_status

    def notify_account_changed(self) -> None:
        """Called by the host when the signed-in account changed."""
        logger.debug("Account changed, re-checking status")
        self.wake()

    async def _sample(self) -> AccountStatus | None:
        try:
            return await retry_async(
                self._client.account_status,
                attempts=self._attempts,
                description="account status check",
            )
        except RecordStoreError as e:
            logger.error("Failed to get account status: %s", e)
            return None

    def _apply(self, value: AccountStatus) -> None:
        if value == self._last_known_status:
            return
        logger.info(
            "Account status changed from %s to %s",
            self._last_known_status.description if self._last_known_status else "Unknown",
            value.description,
        )
        self._last_known_status = value
        self._stream.publish(value)
