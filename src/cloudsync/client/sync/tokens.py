"""Change token persistence.

This module provides:
- TokenManager: durable storage of the zone's opaque change token
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloudsync.client.state import LocalSettings
    from cloudsync.core.config import SyncEngineConfig

logger = logging.getLogger(__name__)


def token_key(zone_name: str) -> str:
    return f"TOKEN-{zone_name}"


class TokenManager:
    """Persists the change token marking fetch progress for one zone.

    The token is opaque: it is stored exactly as the record store issued
    it. Setting it to None forces the next fetch to start from scratch.
    """

    def __init__(self, config: SyncEngineConfig, settings: LocalSettings) -> None:
        self._config = config
        self._settings = settings

    @property
    def key(self) -> str:
        return token_key(self._config.zone_name)

    @property
    def change_token(self) -> str | None:
        """Token of the last committed fetch page, or None for a full resync."""
        value = self._settings.get(self.key)
        return value or None

    @change_token.setter
    def change_token(self, value: str | None) -> None:
        if value is None:
            self._settings.remove(self.key)
            logger.debug("Cleared change token for zone %s", self._config.zone_name)
            return
        self._settings.set(self.key, value)

    def reset(self) -> None:
        self.change_token = None
