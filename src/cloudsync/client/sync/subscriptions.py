"""Push subscription provisioning.

This module provides:
- SubscriptionManager: one silent zone subscription per registered record type

The local registry maps record type -> subscription id and is stored in
LocalSettings under a key derived from the zone name.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from cloudsync.client.api import NotFoundError, Subscription
from cloudsync.client.sync.retry import retry_async
from cloudsync.client.sync.types import SubscriptionSetupError

if TYPE_CHECKING:
    from cloudsync.client.api import RecordStoreClient
    from cloudsync.client.state import LocalSettings
    from cloudsync.core.config import SyncEngineConfig

logger = logging.getLogger(__name__)


def subscription_registry_key(zone_name: str) -> str:
    return f"CREATEDSUBDB-{zone_name}"


class SubscriptionManager:
    """Creates and verifies subscriptions for the engine's record types."""

    def __init__(
        self,
        config: SyncEngineConfig,
        settings: LocalSettings,
        client: RecordStoreClient,
    ) -> None:
        self._config = config
        self._settings = settings
        self._client = client

    @property
    def key(self) -> str:
        return subscription_registry_key(self._config.zone_name)

    @property
    def registry(self) -> dict[str, str]:
        """Record type -> subscription id for subscriptions created by this client."""
        value = self._settings.get_json(self.key, {})
        return dict(value) if isinstance(value, dict) else {}

    @registry.setter
    def registry(self, value: dict[str, str]) -> None:
        self._settings.set_json(self.key, value)

    def subscription_id_for(self, record_type: str) -> str:
        return f"{self._config.zone_name}.{record_type}.subscription"

    def should_handle_subscription_id(self, subscription_id: str | None) -> bool:
        """Whether a push for this subscription id belongs to this engine."""
        if not subscription_id:
            return False
        return subscription_id in self.registry.values()

    async def create_private_subscriptions_if_needed(self, record_types: list[str]) -> bool:
        """Verify known subscriptions and create the missing ones.

        Args:
            record_types: Record types that need a subscription.

        Returns:
            True once every record type has a verified subscription.

        Raises:
            SubscriptionSetupError: If verification or creation exhausted its retries.
            RecordStoreError: On an unrecoverable store error.
        """
        logger.info("Started processing subscriptions")
        registry = self.registry
        check: dict[str, str] = {}
        create: list[str] = []

        for record_type in record_types:
            subscription_id = registry.get(record_type)
            if subscription_id:
                logger.debug(
                    "%s already subscribed to zone changes, checking that it really exists",
                    record_type,
                )
                check[record_type] = subscription_id
            else:
                logger.debug("No subscription to zone changes for %s, creating one", record_type)
                create.append(record_type)

        if check:
            create.extend(await self._check_subscriptions(check))
        if create:
            await self._create_subscriptions(create)

        logger.info("Finished processing subscriptions")
        return True

    def _make_subscription(self, record_type: str) -> Subscription:
        return Subscription(
            subscription_id=self.subscription_id_for(record_type),
            zone_id=self._config.zone_id,
            record_type=record_type,
            should_send_content_available=True,
        )

    async def _create_subscriptions(self, record_types: list[str]) -> None:
        subscriptions = [self._make_subscription(t) for t in record_types]
        logger.info("Creating subscriptions for types: %s", ", ".join(record_types))

        saved = await retry_async(
            lambda: self._client.modify_subscriptions(saving=subscriptions),
            attempts=self._config.retry_count,
            on_exhausted=lambda e: SubscriptionSetupError(
                SubscriptionSetupError.FAILED_CREATING_SUBSCRIPTION, record_types
            ),
            description="subscription creation",
        )

        registry = self.registry
        for subscription in saved:
            registry[subscription.record_type] = subscription.subscription_id
            logger.info("Subscription for %s created successfully", subscription.record_type)
        self.registry = registry

    async def _check_subscriptions(self, subscriptions: dict[str, str]) -> list[str]:
        """Verify subscriptions concurrently.

        Returns:
            Record types whose subscription no longer exists on the server.
            Their registry entries are removed.
        """

        async def verify(record_type: str, subscription_id: str) -> str | None:
            try:
                await retry_async(
                    lambda: self._client.fetch_subscription(subscription_id),
                    attempts=self._config.retry_count,
                    on_exhausted=lambda e: SubscriptionSetupError(
                        SubscriptionSetupError.FAILED_CHECKING_SUBSCRIPTION, [record_type]
                    ),
                    description="subscription check",
                )
            except NotFoundError:
                logger.error(
                    "Subscription %s exists locally but not on the server", subscription_id
                )
                return record_type
            logger.info("Subscription %s verified successfully", subscription_id)
            return None

        results = await asyncio.gather(
            *(verify(t, s) for t, s in subscriptions.items())
        )
        missing = [t for t in results if t is not None]

        if missing:
            registry = self.registry
            for record_type in missing:
                registry.pop(record_type, None)
            self.registry = registry
        return missing
