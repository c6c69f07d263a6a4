"""Custom zone provisioning.

This module provides:
- ZoneManager: makes sure the engine's zone exists before record traffic
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cloudsync.client.api import NotFoundError, ZoneNotFoundError
from cloudsync.client.sync.retry import retry_async
from cloudsync.client.sync.types import ZoneSetupError

if TYPE_CHECKING:
    from cloudsync.client.api import RecordStoreClient
    from cloudsync.client.state import LocalSettings
    from cloudsync.core.config import SyncEngineConfig

logger = logging.getLogger(__name__)


def zone_flag_key(zone_name: str) -> str:
    return f"CREATEDZONE-{zone_name}"


class ZoneManager:
    """Creates the custom zone once and re-verifies it on later calls.

    A durable flag remembers that the zone was created. While it is set,
    only a lightweight existence check is issued; if that check reports
    the zone missing, the flag is cleared and the zone is created again.
    """

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
        return zone_flag_key(self._config.zone_name)

    @property
    def created_custom_zone(self) -> bool:
        return self._settings.get_bool(self.key)

    @created_custom_zone.setter
    def created_custom_zone(self, value: bool) -> None:
        self._settings.set_bool(self.key, value)

    async def create_custom_zone_if_needed(self) -> bool:
        """Ensure the zone exists.

        Returns:
            True once the zone is known to exist.

        Raises:
            ZoneSetupError: If creation or verification exhausted its retries.
            RecordStoreError: On an unrecoverable store error.
        """
        logger.info("Started setting up zone %s", self._config.zone_name)

        if self.created_custom_zone:
            logger.debug("Already have custom zone, checking that it really exists")
            await self._check_custom_zone()
        else:
            logger.info("Creating zone %s", self._config.zone_name)
            await self._create_zone()

        logger.info("Finished setting up zone %s", self._config.zone_name)
        return self.created_custom_zone

    async def _create_zone(self) -> None:
        zone_id = self._config.zone_id
        zone = await retry_async(
            lambda: self._client.save_zone(zone_id),
            attempts=self._config.retry_count,
            on_exhausted=lambda e: ZoneSetupError(
                ZoneSetupError.FAILED_CREATING_ZONE, zone_id.zone_name
            ),
            description="zone creation",
        )
        logger.info("Zone %s created successfully", zone.zone_name)
        self.created_custom_zone = True

    async def _check_custom_zone(self) -> None:
        zone_id = self._config.zone_id
        try:
            zone = await retry_async(
                lambda: self._client.fetch_zone(zone_id),
                attempts=self._config.retry_count,
                on_exhausted=lambda e: ZoneSetupError(
                    ZoneSetupError.FAILED_CHECKING_ZONE, zone_id.zone_name
                ),
                description="zone check",
            )
        except (ZoneNotFoundError, NotFoundError) as e:
            logger.error("Zone %s no longer exists (%s), recreating it", zone_id.zone_name, e)
            self.created_custom_zone = False
            await self.create_custom_zone_if_needed()
            return
        logger.info("Zone %s verified successfully", zone.zone_name)
