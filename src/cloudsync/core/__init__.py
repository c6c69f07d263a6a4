"""Core module - Shared configuration and types."""

from cloudsync.core.config import (
    CURRENT_USER,
    DEFAULT_ACCOUNT_CHECK_INTERVAL,
    DEFAULT_ENVIRONMENT_CHECK_INTERVAL,
    DEFAULT_NETWORK_CHECK_INTERVAL,
    DEFAULT_RETRY_COUNT,
    ServerConfig,
    SyncEngineConfig,
    ZoneID,
)
from cloudsync.core.types import (
    AccountStatus,
    ApplicationState,
    SavePolicy,
    SyncState,
)

__all__ = [
    # Config
    "CURRENT_USER",
    "DEFAULT_ACCOUNT_CHECK_INTERVAL",
    "DEFAULT_ENVIRONMENT_CHECK_INTERVAL",
    "DEFAULT_NETWORK_CHECK_INTERVAL",
    "DEFAULT_RETRY_COUNT",
    "ServerConfig",
    "SyncEngineConfig",
    "ZoneID",
    # Types
    "AccountStatus",
    "ApplicationState",
    "SavePolicy",
    "SyncState",
]
