"""Shared configuration classes for cloudsync.

This module defines the connection settings for the remote record store
and the settings of a sync engine instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

# Owner placeholder resolved by the record store to the authenticated user
CURRENT_USER = "__defaultOwner__"

DEFAULT_RETRY_COUNT = 3
DEFAULT_ENVIRONMENT_CHECK_INTERVAL = 15 * 60.0  # seconds
DEFAULT_NETWORK_CHECK_INTERVAL = 5.0  # seconds
DEFAULT_ACCOUNT_CHECK_INTERVAL = 60.0  # seconds


@dataclass
class ServerConfig:
    """Configuration for connecting to a record store server.

    Used by both the HTTP client (RecordStoreClient) and the WebSocket
    push listener to ensure consistent connection settings.

    Attributes:
        server_url: Base URL of the server (e.g., "https://records.example.com").
        token: Authentication token for this client.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def ws_url(self) -> str:
        """Get WebSocket URL for push notifications.

        Returns:
            WebSocket URL with token in path.
        """
        url = self.server_url
        if url.startswith("https://"):
            url = "wss://" + url[8:]
        elif url.startswith("http://"):
            url = "ws://" + url[7:]
        return f"{url}/ws/notifications/{self.token}"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS/WSS."""
        return self.server_url.startswith("https://")


@dataclass(frozen=True)
class ZoneID:
    """Identifies a zone: its name plus the owner it belongs to."""

    zone_name: str
    owner_name: str = CURRENT_USER

    def to_dict(self) -> dict[str, str]:
        return {"zone": self.zone_name, "owner": self.owner_name}


@dataclass
class SyncEngineConfig:
    """Settings of a single sync engine instance.

    Attributes:
        container_identifier: Remote container holding the zone.
        zone_name: Name of the custom zone that scopes all record traffic.
        owner_name: Zone owner; None means the authenticated user.
        data_dir: Directory for durable engine state. Defaults to
            ~/.cloudsync/<container_identifier>.
        retry_count: Attempts per retryable remote operation.
        environment_check_interval: Seconds during which a successful
            zone/subscription setup is trusted without re-verification.
        network_check_interval: Seconds between network probes.
        account_check_interval: Seconds between account status polls.
    """

    container_identifier: str
    zone_name: str
    owner_name: str | None = None
    data_dir: Path | None = None
    retry_count: int = DEFAULT_RETRY_COUNT
    environment_check_interval: float = DEFAULT_ENVIRONMENT_CHECK_INTERVAL
    network_check_interval: float = DEFAULT_NETWORK_CHECK_INTERVAL
    account_check_interval: float = DEFAULT_ACCOUNT_CHECK_INTERVAL

    def __post_init__(self) -> None:
        if not self.container_identifier:
            raise ValueError("container_identifier must not be empty")
        if not self.zone_name:
            raise ValueError("zone_name must not be empty")
        if self.retry_count < 1:
            raise ValueError("retry_count must be at least 1")

    @property
    def zone_id(self) -> ZoneID:
        """Zone identifier, owned by the current user unless configured."""
        return ZoneID(self.zone_name, self.owner_name or CURRENT_USER)

    @property
    def resolved_data_dir(self) -> Path:
        if self.data_dir is not None:
            return Path(self.data_dir)
        return Path.home() / ".cloudsync" / self.container_identifier

    @property
    def settings_path(self) -> Path:
        """SQLite file holding token, zone flag and subscription registry."""
        return self.resolved_data_dir / "settings.db"

    @property
    def pending_operations_path(self) -> Path:
        return self.resolved_data_dir / "PendingOperations" / "pending_operations.json"
