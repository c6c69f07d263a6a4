"""Shared types and exceptions for sync operations.

This module provides:
- SyncError and its subclasses: failures reported by the engine and its managers
- PendingOperation: durable record of deferred work
- SyncReport: counters describing one sync pass
- Type aliases for the callbacks exposed to the local store
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from cloudsync.client.api import ConflictData

if TYPE_CHECKING:
    from cloudsync.client.sync.syncable import Syncable


class SyncError(Exception):
    """Base exception for sync errors."""


class SetupFailedError(SyncError):
    """Zone or subscription preparation did not complete."""


class ZoneSetupError(SyncError):
    """Zone creation or verification exhausted its retries.

    Attributes:
        reason: FAILED_CREATING_ZONE or FAILED_CHECKING_ZONE.
    """

    FAILED_CREATING_ZONE = "failed_creating_zone"
    FAILED_CHECKING_ZONE = "failed_checking_zone"

    def __init__(self, reason: str, zone_name: str) -> None:
        self.reason = reason
        self.zone_name = zone_name
        super().__init__(f"Zone {zone_name}: {reason}")


class SubscriptionSetupError(SyncError):
    """Subscription creation or verification exhausted its retries."""

    FAILED_CREATING_SUBSCRIPTION = "failed_creating_subscription"
    FAILED_CHECKING_SUBSCRIPTION = "failed_checking_subscription"

    def __init__(self, reason: str, record_types: list[str]) -> None:
        self.reason = reason
        self.record_types = record_types
        super().__init__(f"Subscriptions for {', '.join(record_types)}: {reason}")


class FetchChangesError(SyncError):
    """Fetching remote changes exhausted its retries."""


class UploadFailedError(SyncError):
    """Uploading local models exhausted its retries."""


class UnresolvedConflictError(SyncError):
    """A resolved record conflicted again when it was resubmitted."""

    def __init__(self, record_name: str, conflict: ConflictData | None = None) -> None:
        self.record_name = record_name
        self.conflict = conflict
        super().__init__(f"Record {record_name} conflicted again after resolution")


class UnknownRecordTypeError(SyncError):
    """No syncable type is registered for a record type."""

    def __init__(self, record_type: str) -> None:
        self.record_type = record_type
        super().__init__(f"No syncable type registered for record type {record_type!r}")


class OperationKind(str, Enum):
    DELETION = "deletion"


@dataclass
class PendingOperation:
    """Work deferred until sync conditions are met.

    Attributes:
        kind: Operation kind (currently only deletions).
        record_ids: Ids of the records the operation applies to.
    """

    kind: OperationKind
    record_ids: list[str] = field(default_factory=list)

    @classmethod
    def deletion(cls, record_ids: list[str]) -> PendingOperation:
        return cls(kind=OperationKind.DELETION, record_ids=list(record_ids))

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "record_ids": self.record_ids}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingOperation:
        return cls(
            kind=OperationKind(data["kind"]),
            record_ids=[str(i) for i in data.get("record_ids", [])],
        )


@dataclass
class SyncReport:
    """What a single sync pass did."""

    deleted: int = 0
    uploaded: int = 0
    updated: int = 0
    remote_deleted: int = 0
    skipped: bool = False
    errors: list[str] = field(default_factory=list)


# Callback type aliases
ModelsByType = dict[str, list["Syncable"]]
UpdateCallback = Callable[[ModelsByType], None]
DeleteCallback = Callable[[list[str]], None]
ProgressCallback = Callable[[float], None]
