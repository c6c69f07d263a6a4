"""Synchronization engine and its collaborators.

Components:
- SyncEngine: orchestrates setup, deletions, upload and fetch
- ZoneManager, SubscriptionManager, TokenManager: durable zone bookkeeping
- PendingOperationsManager: deletions deferred while offline
- SerialTasks: single-flight serializer for engine work
- PushListener: WebSocket client forwarding push notifications
- Syncable, SyncableRegistry, LocalStore: contract with local models
"""

from cloudsync.client.sync.engine import SyncEngine
from cloudsync.client.sync.pending import PendingOperationsManager
from cloudsync.client.sync.remote_listener import PushListener
from cloudsync.client.sync.retry import retry_async, retry_delay
from cloudsync.client.sync.serial import SerialTasks
from cloudsync.client.sync.subscriptions import SubscriptionManager
from cloudsync.client.sync.syncable import (
    LARGE_PAYLOAD_THRESHOLD,
    LocalStore,
    Syncable,
    SyncableRegistry,
    asset_data,
    inline_or_asset,
)
from cloudsync.client.sync.tokens import TokenManager
from cloudsync.client.sync.types import (
    FetchChangesError,
    OperationKind,
    PendingOperation,
    SetupFailedError,
    SubscriptionSetupError,
    SyncError,
    SyncReport,
    UnknownRecordTypeError,
    UnresolvedConflictError,
    UploadFailedError,
    ZoneSetupError,
)
from cloudsync.client.sync.zones import ZoneManager

__all__ = [
    # Engine
    "SyncEngine",
    "SyncReport",
    # Managers
    "PendingOperationsManager",
    "SubscriptionManager",
    "TokenManager",
    "ZoneManager",
    # Concurrency
    "SerialTasks",
    "retry_async",
    "retry_delay",
    # Push
    "PushListener",
    # Models
    "LARGE_PAYLOAD_THRESHOLD",
    "LocalStore",
    "Syncable",
    "SyncableRegistry",
    "asset_data",
    "inline_or_asset",
    # Pending operations
    "OperationKind",
    "PendingOperation",
    # Errors
    "FetchChangesError",
    "SetupFailedError",
    "SubscriptionSetupError",
    "SyncError",
    "UnknownRecordTypeError",
    "UnresolvedConflictError",
    "UploadFailedError",
    "ZoneSetupError",
]
