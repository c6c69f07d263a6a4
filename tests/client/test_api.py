"""Tests for the record store HTTP client."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from cloudsync.client.api import (
    Asset,
    AuthenticationError,
    ChangeTokenExpiredError,
    NotFoundError,
    Notification,
    Record,
    RecordStoreClient,
    RecordStoreError,
    ServerRecordChangedError,
    Subscription,
    ZoneNotFoundError,
    error_from_dict,
)
from cloudsync.core.config import CURRENT_USER, ServerConfig, ZoneID
from cloudsync.core.types import AccountStatus, SavePolicy

BASE = "http://test/containers/com.example.notes"
ZONE = ZoneID("Notes")


def make_config(server_url: str = "http://test", token: str = "token123") -> ServerConfig:
    """Create a ServerConfig for testing."""
    return ServerConfig(server_url=server_url, token=token)


def make_client() -> RecordStoreClient:
    return RecordStoreClient(make_config(), "com.example.notes")


def record_json(name: str, change_tag: str = "1", **fields: object) -> dict[str, object]:
    return {
        "record_name": name,
        "record_type": "Note",
        "zone": "Notes",
        "owner": CURRENT_USER,
        "change_tag": change_tag,
        "created_at": "2025-01-01T10:00:00+00:00",
        "modified_at": "2025-01-02T10:00:00+00:00",
        "fields": fields,
    }


class TestRecord:
    """Tests for the Record wire type."""

    def test_from_dict(self) -> None:
        """Should decode system fields and tagged values."""
        data = record_json(
            "n1",
            text="hello",
            blob={"$bytes": "aGk="},
            due={"$date": "2025-03-01T00:00:00+00:00"},
            attachment={"$asset": "a-1"},
        )

        record = Record.from_dict(data)

        assert record.record_name == "n1"
        assert record.zone_id == ZONE
        assert record.change_tag == "1"
        assert record["text"] == "hello"
        assert record["blob"] == b"hi"
        assert record["due"] == datetime(2025, 3, 1, tzinfo=timezone.utc)
        assert record["attachment"] == Asset(asset_id="a-1")
        assert record.modified_at == datetime(2025, 1, 2, 10, tzinfo=timezone.utc)

    def test_to_dict_encodes_values(self) -> None:
        """bytes and datetimes are tagged on the wire."""
        record = Record(record_name="n1", record_type="Note", zone_id=ZONE)
        record["blob"] = b"hi"
        record["count"] = 3

        data = record.to_dict()

        assert data["fields"] == {"blob": {"$bytes": "aGk="}, "count": 3}
        assert data["change_tag"] is None

    def test_to_dict_rejects_unuploaded_asset(self, tmp_path: Path) -> None:
        """An asset without an id cannot be encoded."""
        record = Record(record_name="n1", record_type="Note", zone_id=ZONE)
        record["attachment"] = Asset(file_path=tmp_path / "data.bin")

        with pytest.raises(ValueError):
            record.to_dict()

    def test_system_fields_restore_revision(self) -> None:
        """A record rebuilt from system fields targets the same revision."""
        original = Record.from_dict(record_json("n1", change_tag="7", text="x"))

        rebuilt = Record.from_system_fields(original.encoded_system_fields)

        assert rebuilt.record_name == "n1"
        assert rebuilt.change_tag == "7"
        assert rebuilt.fields == {}
        assert rebuilt.encoded_system_fields == original.encoded_system_fields

    def test_system_fields_change_with_revision(self) -> None:
        """Different revisions encode differently."""
        first = Record.from_dict(record_json("n1", change_tag="1"))
        second = Record.from_dict(record_json("n1", change_tag="2"))

        assert first.encoded_system_fields != second.encoded_system_fields

    def test_assets_lists_nested_assets(self) -> None:
        record = Record(record_name="n1", record_type="Note", zone_id=ZONE)
        record["cover"] = Asset(asset_id="a")
        record["pages"] = [Asset(asset_id="b"), "text"]

        assert [a.asset_id for a in record.assets()] == ["a", "b"]


class TestErrorFromDict:
    """Tests for error payload mapping."""

    def test_maps_codes_to_classes(self) -> None:
        """Known codes map to typed exceptions."""
        assert isinstance(error_from_dict({"code": "UNKNOWN_ITEM"}), NotFoundError)
        assert isinstance(error_from_dict({"code": "ZONE_NOT_FOUND"}), ZoneNotFoundError)
        assert isinstance(error_from_dict({"code": "USER_DELETED_ZONE"}), ZoneNotFoundError)
        assert isinstance(
            error_from_dict({"code": "CHANGE_TOKEN_EXPIRED"}), ChangeTokenExpiredError
        )
        assert type(error_from_dict({"code": "SOMETHING_NEW"})) is RecordStoreError

    def test_conflict_carries_both_records(self) -> None:
        """A server-record-changed error exposes the conflict snapshots."""
        error = error_from_dict({
            "code": "SERVER_RECORD_CHANGED",
            "message": "changed",
            "client_record": record_json("n1", change_tag="1", text="mine"),
            "server_record": record_json("n1", change_tag="2", text="theirs"),
        })

        assert isinstance(error, ServerRecordChangedError)
        conflict = error.conflict_data
        assert conflict is not None
        assert conflict.local_record["text"] == "mine"
        assert conflict.remote_record["text"] == "theirs"

    def test_retry_after_marks_transient(self) -> None:
        error = error_from_dict({"code": "ZONE_BUSY", "retry_after": 1.5})

        assert error.retry_after == 1.5
        assert error.is_transient is True

    def test_unknown_code_not_transient(self) -> None:
        assert error_from_dict({"code": "INTERNAL_ERROR"}).is_transient is False


class TestNotification:
    """Tests for push payload parsing."""

    def test_parses_record_zone_payload(self) -> None:
        notification = Notification.from_payload(
            json.dumps({
                "type": "record_zone",
                "subscription_id": "Notes.Note.subscription",
                "zone": "Notes",
            })
        )

        assert notification is not None
        assert notification.subscription_id == "Notes.Note.subscription"
        assert notification.zone_id == ZONE

    def test_rejects_other_payloads(self) -> None:
        """Non record-zone payloads and invalid JSON yield None."""
        assert Notification.from_payload({"type": "ping"}) is None
        assert Notification.from_payload(b"{not json") is None
        assert Notification.from_payload("[1, 2]") is None

    def test_rejects_undecodable_bytes(self) -> None:
        """Bytes that are not valid text yield None instead of raising."""
        assert Notification.from_payload(b"\xff\xfe\xfa") is None
        assert Notification.from_payload(b"\x80abc") is None


class TestRecordStoreClient:
    """Tests for RecordStoreClient requests and error handling."""

    @pytest.mark.asyncio
    async def test_health_check_success(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return True when server is healthy."""
        httpx_mock.add_response(url="http://test/health", json={"status": "ok"})

        async with make_client() as client:
            assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return False when server is down."""
        httpx_mock.add_response(url="http://test/health", status_code=500)

        async with make_client() as client:
            assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return False when the connection fails."""
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

        async with make_client() as client:
            assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Requests carry the API token."""
        httpx_mock.add_response(url=f"{BASE}/account", json={"status": "available"})

        async with make_client() as client:
            status = await client.account_status()

        assert status == AccountStatus.AVAILABLE
        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer token123"

    @pytest.mark.asyncio
    async def test_unauthorized(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """401 raises AuthenticationError."""
        httpx_mock.add_response(url=f"{BASE}/account", status_code=401)

        async with make_client() as client:
            with pytest.raises(AuthenticationError):
                await client.account_status()

    @pytest.mark.asyncio
    async def test_rate_limited_uses_retry_after_header(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """429 becomes a transient error with the suggested delay."""
        httpx_mock.add_response(
            url=f"{BASE}/account", status_code=429, headers={"Retry-After": "3"}
        )

        async with make_client() as client:
            with pytest.raises(RecordStoreError) as exc_info:
                await client.account_status()

        assert exc_info.value.code == "REQUEST_RATE_LIMITED"
        assert exc_info.value.retry_after == 3.0
        assert exc_info.value.is_transient is True

    @pytest.mark.asyncio
    async def test_service_unavailable_is_transient(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url=f"{BASE}/account", status_code=503, text="down")

        async with make_client() as client:
            with pytest.raises(RecordStoreError) as exc_info:
                await client.account_status()

        assert exc_info.value.code == "SERVICE_UNAVAILABLE"
        assert exc_info.value.status_code == 503
        assert exc_info.value.is_transient is True

    @pytest.mark.asyncio
    async def test_transport_error_is_network_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Connection errors become transient NETWORK_FAILURE errors."""
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

        async with make_client() as client:
            with pytest.raises(RecordStoreError) as exc_info:
                await client.account_status()

        assert exc_info.value.code == "NETWORK_FAILURE"
        assert exc_info.value.is_transient is True

    @pytest.mark.asyncio
    async def test_save_zone(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(
            method="PUT",
            url=f"{BASE}/zones/Notes?owner={CURRENT_USER}",
            json={"zone": "Notes", "owner": CURRENT_USER},
        )

        async with make_client() as client:
            zone = await client.save_zone(ZONE)

        assert zone == ZONE

    @pytest.mark.asyncio
    async def test_fetch_missing_zone(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A missing zone raises ZoneNotFoundError."""
        httpx_mock.add_response(
            method="GET",
            url=f"{BASE}/zones/Notes?owner={CURRENT_USER}",
            status_code=404,
            json={"code": "ZONE_NOT_FOUND", "message": "Zone not found"},
        )

        async with make_client() as client:
            with pytest.raises(ZoneNotFoundError):
                await client.fetch_zone(ZONE)

    @pytest.mark.asyncio
    async def test_fetch_missing_subscription(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A bare 404 is an unknown item."""
        httpx_mock.add_response(
            url=f"{BASE}/subscriptions/Notes.Note.subscription", status_code=404
        )

        async with make_client() as client:
            with pytest.raises(NotFoundError):
                await client.fetch_subscription("Notes.Note.subscription")

    @pytest.mark.asyncio
    async def test_modify_subscriptions(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Subscriptions request silent delivery."""
        subscription = Subscription("Notes.Note.subscription", ZONE, "Note")
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/subscriptions/modify",
            json={"saved": [subscription.to_dict()]},
        )

        async with make_client() as client:
            saved = await client.modify_subscriptions(saving=[subscription])

        assert saved == [subscription]
        body = json.loads(httpx_mock.get_request().content)
        assert body["save"][0]["notification_info"] == {"should_send_content_available": True}
        assert body["delete"] == []

    @pytest.mark.asyncio
    async def test_modify_records_per_record_results(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Per-record outcomes are returned, not raised."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/records/modify",
            json={
                "save_results": [
                    {"record_name": "n1", "record": record_json("n1", change_tag="2", text="a")},
                    {
                        "record_name": "n2",
                        "error": {
                            "code": "SERVER_RECORD_CHANGED",
                            "client_record": record_json("n2", change_tag="1", text="b"),
                            "server_record": record_json("n2", change_tag="3", text="c"),
                        },
                    },
                ],
                "delete_results": [
                    {"record_name": "n3"},
                    {"record_name": "n4", "error": {"code": "UNKNOWN_ITEM"}},
                ],
            },
        )
        first = Record(record_name="n1", record_type="Note", zone_id=ZONE, fields={"text": "a"})
        second = Record(record_name="n2", record_type="Note", zone_id=ZONE, fields={"text": "b"})

        async with make_client() as client:
            result = await client.modify_records(
                ZONE, saving=[first, second], deleting=["n3", "n4"]
            )

        saved = result.save_results["n1"].get()
        assert saved is not None
        assert saved.change_tag == "2"
        with pytest.raises(ServerRecordChangedError):
            result.save_results["n2"].get()
        assert result.delete_results["n3"].get() is None
        with pytest.raises(NotFoundError):
            result.delete_results["n4"].get()

        body = json.loads(httpx_mock.get_request().content)
        assert body["zone"] == "Notes"
        assert body["save_policy"] == SavePolicy.IF_SERVER_RECORD_UNCHANGED.value
        assert [r["record_name"] for r in body["save"]] == ["n1", "n2"]
        assert body["delete"] == ["n3", "n4"]

    @pytest.mark.asyncio
    async def test_modify_records_uploads_assets_first(
        self, httpx_mock, tmp_path: Path  # type: ignore[no-untyped-def]
    ) -> None:
        """Assets are uploaded and referenced by id in the saved record."""
        data_file = tmp_path / "payload.bin"
        data_file.write_bytes(b"x" * 10)
        scratch_file = tmp_path / "scratch.bin"
        scratch_file.write_bytes(b"y" * 10)
        httpx_mock.add_response(method="POST", url=f"{BASE}/assets", json={"asset_id": "a-42"})
        httpx_mock.add_response(method="POST", url=f"{BASE}/assets", json={"asset_id": "a-43"})
        httpx_mock.add_response(
            method="POST", url=f"{BASE}/records/modify", json={"save_results": []}
        )
        record = Record(record_name="n1", record_type="Note", zone_id=ZONE)
        record["payload"] = Asset(file_path=data_file)
        record["scratch"] = Asset(file_path=scratch_file, temporary=True)

        async with make_client() as client:
            await client.modify_records(ZONE, saving=[record])

        upload, scratch_upload, modify = httpx_mock.get_requests()
        assert upload.content == b"x" * 10
        assert scratch_upload.content == b"y" * 10
        body = json.loads(modify.content)
        assert body["save"][0]["fields"]["payload"] == {"$asset": "a-42"}
        assert body["save"][0]["fields"]["scratch"] == {"$asset": "a-43"}
        # Only the temporary copy is removed once uploaded
        assert data_file.exists()
        assert not scratch_file.exists()
        assert record["scratch"].file_path is None

    @pytest.mark.asyncio
    async def test_record_zone_changes(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A page of changes is parsed and its assets downloaded."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/zones/Notes/changes",
            json={
                "records": [record_json("n1", attachment={"$asset": "a-1"})],
                "deleted": [{"record_name": "n2", "record_type": "Note"}],
                "change_token": "tok-9",
                "more_coming": True,
            },
        )
        httpx_mock.add_response(method="GET", url=f"{BASE}/assets/a-1", content=b"blob")

        async with make_client() as client:
            changes = await client.record_zone_changes(ZONE, since="tok-8")

        assert changes.change_token == "tok-9"
        assert changes.more_coming is True
        assert [d.record_name for d in changes.deleted] == ["n2"]
        asset = changes.records[0]["attachment"]
        assert asset.read_bytes() == b"blob"
        path = asset.file_path
        assert path is not None and path.exists()
        asset.discard()
        assert not path.exists()
        assert asset.asset_id == "a-1"
        body = json.loads(httpx_mock.get_requests()[0].content)
        assert body == {"owner": CURRENT_USER, "since": "tok-8"}

    @pytest.mark.asyncio
    async def test_expired_token(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """410 means the change token expired."""
        httpx_mock.add_response(
            method="POST", url=f"{BASE}/zones/Notes/changes", status_code=410
        )

        async with make_client() as client:
            with pytest.raises(ChangeTokenExpiredError):
                await client.record_zone_changes(ZONE, since="tok-1")
