"""Contract between the sync engine and local domain models.

This module provides:
- Syncable: base class every synchronized model type implements
- SyncableRegistry: record type -> model type table used to decode records
- LocalStore: protocol of the local persistent store the engine can drive
- inline_or_asset / asset_data: size-threshold split for large payloads
"""

from __future__ import annotations

import logging
import tempfile
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar, Protocol

from cloudsync.client.api import Asset, Record
from cloudsync.core.config import ZoneID

logger = logging.getLogger(__name__)

# Payloads larger than this are sent out-of-band as assets
LARGE_PAYLOAD_THRESHOLD = 1_000_000  # bytes


class Syncable(ABC):
    """A local model that can be stored as a remote record.

    Subclasses provide a stable ``id`` and a ``sync_metadata`` attribute
    (None until the first successful upload). ``record_type`` defaults to
    the class name.

    Example:
        @dataclass
        class Note(Syncable):
            id: str
            text: str
            sync_metadata: bytes | None = None

            def to_record(self, zone_id):
                record = self.base_record(zone_id)
                record["text"] = self.text
                return record

            @classmethod
            def from_record(cls, record):
                return cls(id=record.record_name, text=record["text"],
                           sync_metadata=record.encoded_system_fields)

            @classmethod
            def resolve_conflict(cls, client_record, server_record):
                server_record["text"] = client_record["text"]
                return server_record
    """

    record_type: ClassVar[str]

    id: str
    sync_metadata: bytes | None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "record_type" not in cls.__dict__:
            cls.record_type = cls.__name__

    @abstractmethod
    def to_record(self, zone_id: ZoneID) -> Record:
        """Convert the model to its wire record."""

    @classmethod
    @abstractmethod
    def from_record(cls, record: Record) -> Syncable:
        """Create a model from a fetched record.

        Raises:
            Exception: If the record lacks required fields.
        """

    @classmethod
    @abstractmethod
    def resolve_conflict(cls, client_record: Record, server_record: Record) -> Record:
        """Merge a rejected local record with the current server record.

        The returned record is resubmitted as-is. It must carry the server
        record's system fields for the resubmission to succeed.
        """

    def base_record(self, zone_id: ZoneID) -> Record:
        """Empty record for this model, reusing captured system fields."""
        if self.sync_metadata:
            return Record.from_system_fields(self.sync_metadata)
        return Record(record_name=self.id, record_type=self.record_type, zone_id=zone_id)


class SyncableRegistry:
    """Registered syncable types, keyed by record type."""

    def __init__(self) -> None:
        self._types: dict[str, type[Syncable]] = {}

    def register(self, syncable_type: type[Syncable]) -> None:
        existing = self._types.get(syncable_type.record_type)
        if existing is not None and existing is not syncable_type:
            raise ValueError(
                f"Record type {syncable_type.record_type!r} already registered "
                f"by {existing.__name__}"
            )
        self._types[syncable_type.record_type] = syncable_type
        logger.debug("Registered syncable type %s", syncable_type.record_type)

    def get_type(self, record_type: str) -> type[Syncable] | None:
        return self._types.get(record_type)

    @property
    def record_types(self) -> list[str]:
        return sorted(self._types)

    def create_instance(self, record: Record) -> Syncable | None:
        """Decode a record with its registered type.

        Returns:
            The model, or None if no type is registered for the record.

        Raises:
            Exception: Whatever the type's from_record raises.
        """
        syncable_type = self._types.get(record.record_type)
        if syncable_type is None:
            return None
        return syncable_type.from_record(record)

    def __contains__(self, record_type: object) -> bool:
        return record_type in self._types

    def __len__(self) -> int:
        return len(self._types)


class LocalStore(Protocol):
    """Local persistent store consumed by the engine."""

    async def fetch_unsynced(self, record_type: str) -> list[Syncable]:
        """Models of this type that were never confirmed uploaded."""
        ...

    async def save(self, model: Syncable) -> None:
        ...

    async def delete(self, ids: list[str]) -> None:
        ...


def inline_or_asset(data: bytes, threshold: int = LARGE_PAYLOAD_THRESHOLD) -> bytes | Asset:
    """Return data for an inline field, or an Asset if it is too large.

    Args:
        data: Payload bytes.
        threshold: Largest size kept inline.

    Returns:
        The bytes themselves, or an Asset backed by a temporary file. The
        engine removes the file once the record has been uploaded.
    """
    if len(data) <= threshold:
        return data
    path = Path(tempfile.gettempdir()) / f"cloudsync-asset-{uuid.uuid4().hex}"
    path.write_bytes(data)
    logger.debug("Payload of %d bytes written out-of-band to %s", len(data), path)
    return Asset(file_path=path, temporary=True)


def asset_data(value: Any) -> bytes:
    """Read a payload field written by inline_or_asset.

    Call it from from_record: fetched asset files are removed once their
    page has been committed.
    """
    if isinstance(value, Asset):
        return value.read_bytes() or b""
    if isinstance(value, bytes):
        return value
    return b""
