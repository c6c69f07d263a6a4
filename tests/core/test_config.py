"""Tests for core configuration classes."""

from __future__ import annotations

from pathlib import Path

import pytest

from cloudsync.core.config import CURRENT_USER, ServerConfig, SyncEngineConfig, ZoneID


class TestServerConfig:
    """Tests for ServerConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with required fields."""
        config = ServerConfig(server_url="https://example.com", token="test-token")
        assert config.server_url == "https://example.com"
        assert config.token == "test-token"
        assert config.timeout == 30.0
        assert config.verify_ssl is True

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from server URL."""
        config = ServerConfig(server_url="https://example.com/", token="test-token")
        assert config.server_url == "https://example.com"

    def test_ws_url_https(self) -> None:
        """Should convert HTTPS to WSS for WebSocket URL."""
        config = ServerConfig(server_url="https://example.com", token="test-token")
        assert config.ws_url == "wss://example.com/ws/notifications/test-token"

    def test_ws_url_http(self) -> None:
        """Should convert HTTP to WS for WebSocket URL."""
        config = ServerConfig(server_url="http://localhost:8000", token="test-token")
        assert config.ws_url == "ws://localhost:8000/ws/notifications/test-token"

    def test_is_secure(self) -> None:
        assert ServerConfig(server_url="https://example.com", token="t").is_secure is True
        assert ServerConfig(server_url="http://localhost:8000", token="t").is_secure is False


class TestZoneID:
    """Tests for ZoneID."""

    def test_default_owner_is_current_user(self) -> None:
        assert ZoneID("Notes").owner_name == CURRENT_USER

    def test_to_dict(self) -> None:
        assert ZoneID("Notes", "alice").to_dict() == {"zone": "Notes", "owner": "alice"}

    def test_hashable(self) -> None:
        assert {ZoneID("Notes"), ZoneID("Notes")} == {ZoneID("Notes")}


class TestSyncEngineConfig:
    """Tests for SyncEngineConfig."""

    def test_defaults(self) -> None:
        config = SyncEngineConfig(container_identifier="com.example.notes", zone_name="Notes")

        assert config.retry_count == 3
        assert config.environment_check_interval == 900.0
        assert config.zone_id == ZoneID("Notes", CURRENT_USER)
        assert config.resolved_data_dir == Path.home() / ".cloudsync" / "com.example.notes"

    def test_explicit_owner(self) -> None:
        config = SyncEngineConfig(
            container_identifier="com.example.notes", zone_name="Notes", owner_name="alice"
        )

        assert config.zone_id == ZoneID("Notes", "alice")

    def test_state_paths_under_data_dir(self, tmp_path: Path) -> None:
        config = SyncEngineConfig(
            container_identifier="com.example.notes", zone_name="Notes", data_dir=tmp_path
        )

        assert config.settings_path == tmp_path / "settings.db"
        assert config.pending_operations_path == (
            tmp_path / "PendingOperations" / "pending_operations.json"
        )

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"container_identifier": "", "zone_name": "Notes"},
            {"container_identifier": "com.example.notes", "zone_name": ""},
            {"container_identifier": "com.example.notes", "zone_name": "Notes", "retry_count": 0},
        ],
    )
    def test_invalid_values_rejected(self, kwargs: dict[str, object]) -> None:
        with pytest.raises(ValueError):
            SyncEngineConfig(**kwargs)  # type: ignore[arg-type]
