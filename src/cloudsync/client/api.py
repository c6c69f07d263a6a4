"""HTTP client for the remote record store.

This module provides:
- RecordStoreClient: async HTTP client for communicating with the record store
- Wire types: Record, Asset, Subscription, ModifyResult, ZoneChanges, Notification
- RecordStoreError and its subclasses, mapped from HTTP status and error codes
"""

from __future__ import annotations

import base64
import json
import logging
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from cloudsync.core.config import CURRENT_USER, ServerConfig, ZoneID
from cloudsync.core.types import AccountStatus, SavePolicy

logger = logging.getLogger(__name__)

# Error codes the provider marks as safe to retry
RETRYABLE_CODES = frozenset({
    "NETWORK_FAILURE",
    "NETWORK_UNAVAILABLE",
    "SERVICE_UNAVAILABLE",
    "REQUEST_RATE_LIMITED",
    "ZONE_BUSY",
    "SERVER_RESPONSE_LOST",
})


class RecordStoreError(Exception):
    """Base exception for record store errors.

    Attributes:
        code: Provider error code (e.g. "ZONE_NOT_FOUND").
        status_code: HTTP status code, if the error came from a response.
        retry_after: Provider-suggested delay in seconds before retrying.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def is_transient(self) -> bool:
        """Whether the provider considers this condition retryable."""
        return self.retry_after is not None or self.code in RETRYABLE_CODES


class AuthenticationError(RecordStoreError):
    """Authentication failed."""


class PermissionDeniedError(RecordStoreError):
    """The account may not perform this operation."""


class NotFoundError(RecordStoreError):
    """Item (record, subscription) not found."""


class ZoneNotFoundError(RecordStoreError):
    """The zone does not exist or was deleted by the user."""


class ChangeTokenExpiredError(RecordStoreError):
    """The change token is no longer valid; a full resync is required."""


class BatchSizeExceededError(RecordStoreError):
    """The request carried more items than the provider accepts."""


class ServerRecordChangedError(RecordStoreError):
    """Save rejected because the server copy changed since it was last read."""

    def __init__(
        self,
        message: str,
        client_record: Record | None = None,
        server_record: Record | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, code="SERVER_RECORD_CHANGED", **kwargs)
        self.client_record = client_record
        self.server_record = server_record

    @property
    def conflict_data(self) -> ConflictData | None:
        """Both colliding snapshots, or None if the provider omitted one."""
        if self.client_record is None or self.server_record is None:
            return None
        return ConflictData(
            local_record=self.client_record,
            remote_record=self.server_record,
        )


_ERRORS_BY_CODE: dict[str, type[RecordStoreError]] = {
    "NOT_AUTHENTICATED": PermissionDeniedError,
    "PERMISSION_FAILURE": PermissionDeniedError,
    "UNKNOWN_ITEM": NotFoundError,
    "ZONE_NOT_FOUND": ZoneNotFoundError,
    "USER_DELETED_ZONE": ZoneNotFoundError,
    "CHANGE_TOKEN_EXPIRED": ChangeTokenExpiredError,
    "LIMIT_EXCEEDED": BatchSizeExceededError,
    "BATCH_REQUEST_FAILED": BatchSizeExceededError,
}


def error_from_dict(
    data: dict[str, Any],
    status_code: int | None = None,
    retry_after: float | None = None,
) -> RecordStoreError:
    """Build the typed exception for an error payload.

    Args:
        data: Error body with "code", "message" and optional "retry_after".
        status_code: HTTP status of the enclosing response.
        retry_after: Delay taken from a Retry-After header.

    Returns:
        The matching RecordStoreError subclass instance.
    """
    code = data.get("code")
    message = data.get("message") or code or "Unknown error"
    if data.get("retry_after") is not None:
        retry_after = float(data["retry_after"])

    if code == "SERVER_RECORD_CHANGED":
        return ServerRecordChangedError(
            message,
            client_record=_optional_record(data.get("client_record")),
            server_record=_optional_record(data.get("server_record")),
            status_code=status_code,
            retry_after=retry_after,
        )

    error_class = _ERRORS_BY_CODE.get(code or "", RecordStoreError)
    return error_class(message, code=code, status_code=status_code, retry_after=retry_after)


@dataclass
class Asset:
    """Out-of-band blob referenced from a record field.

    Before upload the content lives at file_path; once the store has it,
    asset_id identifies it. A temporary file_path was created by cloudsync
    and is removed by discard(); other files are left alone.
    """

    file_path: Path | None = None
    asset_id: str | None = None
    temporary: bool = field(default=False, compare=False)

    def read_bytes(self) -> bytes | None:
        if self.file_path is None or not self.file_path.exists():
            return None
        return self.file_path.read_bytes()

    def discard(self) -> None:
        """Drop a temporary local copy of the content; asset_id is kept."""
        if self.temporary and self.file_path is not None:
            self.file_path.unlink(missing_ok=True)
            self.file_path = None


def _encode_value(value: Any) -> Any:
    if isinstance(value, Asset):
        if value.asset_id is None:
            raise ValueError("Asset must be uploaded before its record is encoded")
        return {"$asset": value.asset_id}
    if isinstance(value, bytes):
        return {"$bytes": base64.b64encode(value).decode("ascii")}
    if isinstance(value, datetime):
        return {"$date": value.isoformat()}
    if isinstance(value, list):
        return [_encode_value(v) for v in value]
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if "$asset" in value:
            return Asset(asset_id=value["$asset"])
        if "$bytes" in value:
            return base64.b64decode(value["$bytes"])
        if "$date" in value:
            return datetime.fromisoformat(value["$date"])
    if isinstance(value, list):
        return [_decode_value(v) for v in value]
    return value


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Record:
    """A typed bag of fields stored in a zone.

    change_tag and the timestamps are system fields assigned by the store;
    they are None for a record that was never saved.
    """

    record_name: str
    record_type: str
    zone_id: ZoneID
    fields: dict[str, Any] = field(default_factory=dict)
    change_tag: str | None = None
    created_at: datetime | None = None
    modified_at: datetime | None = None

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.fields[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def keys(self) -> list[str]:
        return list(self.fields)

    @property
    def encoded_system_fields(self) -> bytes:
        """Opaque sync metadata identifying this exact server revision."""
        system = {
            "record_name": self.record_name,
            "record_type": self.record_type,
            "zone": self.zone_id.zone_name,
            "owner": self.zone_id.owner_name,
            "change_tag": self.change_tag,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
        }
        return json.dumps(system, sort_keys=True, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_system_fields(cls, data: bytes) -> Record:
        """Rebuild an empty record carrying previously captured system fields.

        Saving it with new fields updates the server revision it came from
        rather than creating a new record.
        """
        system = json.loads(data.decode("utf-8"))
        return cls(
            record_name=system["record_name"],
            record_type=system["record_type"],
            zone_id=ZoneID(system["zone"], system["owner"]),
            change_tag=system["change_tag"],
            created_at=_parse_datetime(system["created_at"]),
            modified_at=_parse_datetime(system["modified_at"]),
        )

    def assets(self) -> list[Asset]:
        """All assets referenced by this record's fields."""
        found: list[Asset] = []
        for value in self.fields.values():
            values = value if isinstance(value, list) else [value]
            found.extend(v for v in values if isinstance(v, Asset))
        return found

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_name": self.record_name,
            "record_type": self.record_type,
            "zone": self.zone_id.zone_name,
            "owner": self.zone_id.owner_name,
            "change_tag": self.change_tag,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
            "fields": {k: _encode_value(v) for k, v in self.fields.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        """Create from API response dictionary."""
        return cls(
            record_name=data["record_name"],
            record_type=data["record_type"],
            zone_id=ZoneID(data["zone"], data.get("owner") or CURRENT_USER),
            fields={k: _decode_value(v) for k, v in (data.get("fields") or {}).items()},
            change_tag=data.get("change_tag"),
            created_at=_parse_datetime(data.get("created_at")),
            modified_at=_parse_datetime(data.get("modified_at")),
        )


def _optional_record(data: dict[str, Any] | None) -> Record | None:
    return Record.from_dict(data) if data else None


@dataclass
class ConflictData:
    """A detected optimistic-concurrency collision."""

    local_record: Record
    remote_record: Record


@dataclass
class Subscription:
    """Zone subscription requesting silent pushes for one record type."""

    subscription_id: str
    zone_id: ZoneID
    record_type: str
    should_send_content_available: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "zone": self.zone_id.zone_name,
            "owner": self.zone_id.owner_name,
            "record_type": self.record_type,
            "notification_info": {
                "should_send_content_available": self.should_send_content_available,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Subscription:
        info = data.get("notification_info") or {}
        return cls(
            subscription_id=data["subscription_id"],
            zone_id=ZoneID(data["zone"], data.get("owner") or CURRENT_USER),
            record_type=data["record_type"],
            should_send_content_available=info.get("should_send_content_available", True),
        )


@dataclass
class RecordResult:
    """Outcome of saving or deleting a single record in a batch."""

    record_name: str
    record: Record | None = None
    error: RecordStoreError | None = None

    def get(self) -> Record | None:
        """Return the saved record, raising the per-record error if any."""
        if self.error is not None:
            raise self.error
        return self.record

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecordResult:
        error = data.get("error")
        return cls(
            record_name=data["record_name"],
            record=_optional_record(data.get("record")),
            error=error_from_dict(error) if error else None,
        )


@dataclass
class ModifyResult:
    """Per-record results of a batched save/delete, keyed by record name."""

    save_results: dict[str, RecordResult] = field(default_factory=dict)
    delete_results: dict[str, RecordResult] = field(default_factory=dict)


@dataclass
class DeletedRecord:
    """A record removed from the zone since the presented change token."""

    record_name: str
    record_type: str


@dataclass
class ZoneChanges:
    """One page of zone changes."""

    records: list[Record]
    deleted: list[DeletedRecord]
    change_token: str | None
    more_coming: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ZoneChanges:
        return cls(
            records=[Record.from_dict(r) for r in data.get("records", [])],
            deleted=[
                DeletedRecord(record_name=d["record_name"], record_type=d.get("record_type", ""))
                for d in data.get("deleted", [])
            ],
            change_token=data.get("change_token"),
            more_coming=bool(data.get("more_coming", False)),
        )


@dataclass
class Notification:
    """Push notification about changes in a subscribed zone."""

    subscription_id: str | None
    zone_id: ZoneID | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | str | bytes) -> Notification | None:
        """Parse a push payload.

        Args:
            payload: Decoded JSON object, or its raw text.

        Returns:
            The notification, or None if the payload is not a record store push.
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError:
                # Malformed JSON or undecodable bytes
                return None
        if not isinstance(payload, dict) or payload.get("type") != "record_zone":
            return None
        zone_id = None
        if payload.get("zone"):
            zone_id = ZoneID(payload["zone"], payload.get("owner") or CURRENT_USER)
        return cls(subscription_id=payload.get("subscription_id"), zone_id=zone_id)


def _retry_after_header(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class RecordStoreClient:
    """Async HTTP client for the record store API.

    Usage:
        config = ServerConfig(server_url="https://records.example.com", token="...")
        async with RecordStoreClient(config, "com.example.notes") as client:
            status = await client.account_status()
    """

    def __init__(
        self,
        config: ServerConfig,
        container_identifier: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the record store client.

        Args:
            config: Server configuration (URL, token, timeout, SSL).
            container_identifier: Container all requests are scoped to.
            transport: Optional custom transport.
        """
        self._config = config
        self._container = container_identifier
        self._client = httpx.AsyncClient(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
            transport=transport,
        )

    @property
    def container_identifier(self) -> str:
        return self._container

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> RecordStoreClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _path(self, suffix: str) -> str:
        return f"/containers/{self._container}{suffix}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise RecordStoreError(
                f"Network failure: {e}", code="NETWORK_FAILURE"
            ) from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the typed exception matching an error response."""
        if response.status_code < 400:
            return response

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        retry_after = _retry_after_header(response)

        if response.status_code == 401:
            raise AuthenticationError(
                body.get("message", "Invalid or expired token"), "NOT_AUTHENTICATED", 401
            )
        if response.status_code == 403 and not body.get("code"):
            body["code"] = "PERMISSION_FAILURE"
        if response.status_code == 404 and not body.get("code"):
            body["code"] = "UNKNOWN_ITEM"
        if response.status_code == 410 and not body.get("code"):
            body["code"] = "CHANGE_TOKEN_EXPIRED"
        if response.status_code == 429 and not body.get("code"):
            body["code"] = "REQUEST_RATE_LIMITED"
        if response.status_code == 503 and not body.get("code"):
            body["code"] = "SERVICE_UNAVAILABLE"
        raise error_from_dict(body, response.status_code, retry_after)

    # === Health and account ===

    async def health_check(self) -> bool:
        """Check if the server is reachable and healthy."""
        try:
            response = await self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    async def account_status(self) -> AccountStatus:
        response = await self._request("GET", self._path("/account"))
        return AccountStatus(response.json()["status"])

    # === Zones ===

    async def save_zone(self, zone_id: ZoneID) -> ZoneID:
        """Create the zone (idempotent on the server side)."""
        response = await self._request(
            "PUT",
            self._path(f"/zones/{zone_id.zone_name}"),
            params={"owner": zone_id.owner_name},
        )
        data = response.json()
        return ZoneID(data["zone"], data.get("owner") or zone_id.owner_name)

    async def fetch_zone(self, zone_id: ZoneID) -> ZoneID:
        """Check that a zone exists.

        Raises:
            ZoneNotFoundError: If the zone is missing or was deleted.
        """
        response = await self._request(
            "GET",
            self._path(f"/zones/{zone_id.zone_name}"),
            params={"owner": zone_id.owner_name},
        )
        data = response.json()
        return ZoneID(data["zone"], data.get("owner") or zone_id.owner_name)

    # === Subscriptions ===

    async def modify_subscriptions(
        self,
        saving: list[Subscription],
        deleting: list[str] | None = None,
    ) -> list[Subscription]:
        """Save and delete subscriptions in one request.

        Returns:
            The saved subscriptions, in request order.
        """
        response = await self._request(
            "POST",
            self._path("/subscriptions/modify"),
            json={
                "save": [s.to_dict() for s in saving],
                "delete": list(deleting or []),
            },
        )
        return [Subscription.from_dict(s) for s in response.json().get("saved", [])]

    async def fetch_subscription(self, subscription_id: str) -> Subscription:
        """Fetch one subscription.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        response = await self._request("GET", self._path(f"/subscriptions/{subscription_id}"))
        return Subscription.from_dict(response.json())

    async def list_subscriptions(self) -> list[Subscription]:
        response = await self._request("GET", self._path("/subscriptions"))
        return [Subscription.from_dict(s) for s in response.json()]

    # === Records ===

    async def modify_records(
        self,
        zone_id: ZoneID,
        saving: list[Record] | None = None,
        deleting: list[str] | None = None,
        save_policy: SavePolicy = SavePolicy.IF_SERVER_RECORD_UNCHANGED,
    ) -> ModifyResult:
        """Save and delete records in one batch.

        Assets referenced by saved records are uploaded first and their
        local files removed. Per-record failures (including conflicts) are
        reported in the result, not raised.

        Raises:
            RecordStoreError: If the batch as a whole failed.
        """
        saving = saving or []
        for record in saving:
            for asset in record.assets():
                if asset.asset_id is None:
                    asset.asset_id = await self.upload_asset(asset)
                    asset.discard()

        response = await self._request(
            "POST",
            self._path("/records/modify"),
            json={
                **zone_id.to_dict(),
                "save_policy": save_policy.value,
                "save": [r.to_dict() for r in saving],
                "delete": list(deleting or []),
            },
        )
        data = response.json()
        result = ModifyResult()
        for entry in data.get("save_results", []):
            item = RecordResult.from_dict(entry)
            result.save_results[item.record_name] = item
        for entry in data.get("delete_results", []):
            item = RecordResult.from_dict(entry)
            result.delete_results[item.record_name] = item
        return result

    async def record_zone_changes(
        self,
        zone_id: ZoneID,
        since: str | None,
    ) -> ZoneChanges:
        """Fetch one page of changes made after the given change token.

        Assets of the returned records are downloaded to temporary files
        owned by the caller.

        Raises:
            ChangeTokenExpiredError: If the token can no longer be used.
        """
        response = await self._request(
            "POST",
            self._path(f"/zones/{zone_id.zone_name}/changes"),
            json={"owner": zone_id.owner_name, "since": since},
        )
        changes = ZoneChanges.from_dict(response.json())
        for record in changes.records:
            for asset in record.assets():
                await self.download_asset(asset)
        return changes

    # === Assets ===

    async def upload_asset(self, asset: Asset) -> str:
        content = asset.read_bytes()
        if content is None:
            raise ValueError(f"Asset file missing: {asset.file_path}")
        response = await self._request(
            "POST",
            self._path("/assets"),
            content=content,
            headers={"Content-Type": "application/octet-stream"},
        )
        asset_id: str = response.json()["asset_id"]
        logger.debug("Uploaded asset %s (%d bytes)", asset_id, len(content))
        return asset_id

    async def download_asset(self, asset: Asset) -> Asset:
        """Download an asset's content into a temporary file.

        The file belongs to the caller, who removes it with Asset.discard().
        """
        response = await self._request("GET", self._path(f"/assets/{asset.asset_id}"))
        path = Path(tempfile.gettempdir()) / f"cloudsync-asset-{uuid.uuid4().hex}"
        path.write_bytes(response.content)
        asset.file_path = path
        asset.temporary = True
        return asset
