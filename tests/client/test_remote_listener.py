"""Tests for PushListener."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import websockets

from cloudsync.client.sync.remote_listener import PushListener
from cloudsync.client.sync.types import FetchChangesError, SyncReport
from cloudsync.core.config import ServerConfig
from tests.client.fakes import wait_until


@pytest.fixture
def config() -> ServerConfig:
    """Create a test ServerConfig."""
    return ServerConfig(server_url="http://localhost:8000", token="test-token")


@pytest.fixture
def engine() -> MagicMock:
    """Engine double that accepts every push."""
    engine = MagicMock()
    engine.process_subscription_notification.return_value = True
    engine.fetch_changes = AsyncMock(return_value=SyncReport(updated=2))
    return engine


class TestPushListenerInit:
    """Tests for PushListener initialization."""

    def test_ws_url_uses_config(self, config: ServerConfig, engine: MagicMock) -> None:
        listener = PushListener(config, engine)

        assert listener.ws_url == "ws://localhost:8000/ws/notifications/test-token"

    def test_ws_url_https(self, engine: MagicMock) -> None:
        config = ServerConfig(server_url="https://example.com", token="token")
        listener = PushListener(config, engine)

        assert listener.ws_url == "wss://example.com/ws/notifications/token"

    def test_not_connected_initially(self, config: ServerConfig, engine: MagicMock) -> None:
        assert PushListener(config, engine).connected is False


class TestPushListenerMessages:
    """Tests for message forwarding."""

    def test_forwards_payload_to_engine(self, config: ServerConfig, engine: MagicMock) -> None:
        listener = PushListener(config, engine)
        message = json.dumps({"type": "record_zone", "subscription_id": "Notes.Note.subscription"})

        assert listener.handle_message(message) is True
        engine.process_subscription_notification.assert_called_once_with(message)

    def test_ignored_payload(self, config: ServerConfig, engine: MagicMock) -> None:
        engine.process_subscription_notification.return_value = False
        listener = PushListener(config, engine)

        assert listener.handle_message("not a push") is False


class TestPushListenerLifecycle:
    """Tests for start, stop and reconnection."""

    @pytest.mark.asyncio
    async def test_stop_without_start(self, config: ServerConfig, engine: MagicMock) -> None:
        listener = PushListener(config, engine)

        await listener.stop()

        assert listener.connected is False

    @pytest.mark.asyncio
    async def test_keeps_retrying_unreachable_server(
        self, config: ServerConfig, engine: MagicMock
    ) -> None:
        """Connection errors are retried until stop()."""
        connect = AsyncMock(side_effect=OSError("connection refused"))
        listener = PushListener(config, engine, reconnect_delay=0.01)

        with patch("cloudsync.client.sync.remote_listener.websockets.connect", connect):
            listener.start()
            await wait_until(lambda: connect.await_count >= 3)
            await listener.stop()

        assert listener.connected is False
        engine.fetch_changes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetches_missed_changes_after_reconnect(
        self, config: ServerConfig, engine: MagicMock
    ) -> None:
        """Only a reconnect, not the first connection, triggers a fetch."""
        first = MagicMock()
        first.recv = AsyncMock(side_effect=websockets.ConnectionClosed(None, None))
        first.close = AsyncMock()
        second = MagicMock()
        second.recv = AsyncMock(side_effect=websockets.ConnectionClosed(None, None))
        second.close = AsyncMock()
        connections = [first, second]

        async def connect(*args: object, **kwargs: object) -> MagicMock:
            if connections:
                return connections.pop(0)
            raise OSError("gone")

        listener = PushListener(config, engine, reconnect_delay=0.01)

        with patch("cloudsync.client.sync.remote_listener.websockets.connect", connect):
            listener.start()
            await wait_until(lambda: engine.fetch_changes.await_count == 1)
            await listener.stop()

        assert connections == []
        first.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_reconnects(
        self, config: ServerConfig, engine: MagicMock
    ) -> None:
        """An error while handling a frame drops the connection, not the listener."""
        engine.process_subscription_notification.side_effect = [
            UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"),
            True,
        ]
        first = MagicMock()
        first.recv = AsyncMock(return_value=b"\xff\xfe\xfa")
        first.close = AsyncMock()
        second = MagicMock()
        second.recv = AsyncMock(
            side_effect=[b'{"type": "record_zone"}', websockets.ConnectionClosed(None, None)]
        )
        second.close = AsyncMock()
        connections = [first, second]

        async def connect(*args: object, **kwargs: object) -> MagicMock:
            if connections:
                return connections.pop(0)
            raise OSError("gone")

        listener = PushListener(config, engine, reconnect_delay=0.01)

        with patch("cloudsync.client.sync.remote_listener.websockets.connect", connect):
            listener.start()
            await wait_until(
                lambda: engine.process_subscription_notification.call_count == 2
            )
            task = listener._task
            assert task is not None and not task.done()
            await listener.stop()

        assert connections == []

    @pytest.mark.asyncio
    async def test_failed_missed_fetch_is_logged(
        self, config: ServerConfig, engine: MagicMock
    ) -> None:
        engine.fetch_changes = AsyncMock(side_effect=FetchChangesError("gave up"))
        listener = PushListener(config, engine)

        await listener._fetch_missed_changes()

        engine.fetch_changes.assert_awaited_once()
