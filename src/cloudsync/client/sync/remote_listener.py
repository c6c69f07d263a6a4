"""Push listener for record zone notifications.

This module provides:
- PushListener: WebSocket client that hands push payloads to the sync engine

Architecture:
    Server ─push─► PushListener ─► SyncEngine.process_subscription_notification
                        │
                 (on reconnect: SyncEngine.fetch_changes)

When connected, the listener forwards push payloads as they arrive.
After a reconnect it schedules a fetch so changes pushed while
disconnected are not lost.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from typing import TYPE_CHECKING

import websockets
from websockets.exceptions import WebSocketException

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

    from cloudsync.client.sync.engine import SyncEngine
    from cloudsync.core.config import ServerConfig

logger = logging.getLogger(__name__)


class PushListener:
    """WebSocket listener for silent push notifications.

    Runs as a task on the engine's event loop.

    Usage:
        listener = PushListener(server_config, engine)
        listener.start()
        ...
        await listener.stop()
    """

    def __init__(
        self,
        config: ServerConfig,
        engine: SyncEngine,
        reconnect_delay: float = 5.0,
    ) -> None:
        """Initialize the push listener.

        Args:
            config: Server configuration with URL and token.
            engine: Engine receiving the notifications.
            reconnect_delay: Delay between reconnection attempts.
        """
        self._config = config
        self._engine = engine
        self._reconnect_delay = reconnect_delay

        self._ws: ClientConnection | None = None
        self._connected = False
        self._should_run = False
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._fetch_tasks: set[asyncio.Task[None]] = set()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def ws_url(self) -> str:
        return self._config.ws_url

    def start(self) -> None:
        """Start listening on the running event loop."""
        if self._task is not None and not self._task.done():
            logger.warning("PushListener already running")
            return

        self._should_run = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._connection_loop(), name="PushListener"
        )
        logger.info("PushListener started")

    async def stop(self) -> None:
        self._should_run = False
        if self._stop_event is not None:
            self._stop_event.set()

        await self._close_connection()

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        for task in list(self._fetch_tasks):
            task.cancel()

        logger.info("PushListener stopped")

    async def _connection_loop(self) -> None:
        """Main connection loop with automatic reconnection."""
        was_connected = False

        while self._should_run:
            try:
                await self._connect()

                if was_connected:
                    logger.info("Reconnected, fetching missed changes...")
                    self._schedule_fetch()

                was_connected = True
                await self._listen_for_messages()

            except WebSocketException as e:
                if was_connected:
                    logger.warning("PushListener disconnected: %s", e)
                logger.debug("WebSocket error: %s", e)
            except OSError as e:
                if was_connected:
                    logger.warning("PushListener connection lost")
                logger.debug("Connection error: %s", e)
            except Exception as e:
                logger.warning("PushListener error: %s", e)
                logger.debug("Full traceback:", exc_info=True)

            if not self._should_run:
                break

            self._connected = False

            logger.info("PushListener reconnecting in %.0fs...", self._reconnect_delay)
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),  # type: ignore[union-attr]
                    timeout=self._reconnect_delay,
                )
                break
            except TimeoutError:
                pass

    async def _connect(self) -> None:
        ssl_context: ssl.SSLContext | None = None
        if self.ws_url.startswith("wss://"):
            ssl_context = ssl.create_default_context()
            if not self._config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._ws = await websockets.connect(
            self.ws_url,
            ssl=ssl_context,
            open_timeout=10,
            close_timeout=5,
        )
        self._connected = True
        logger.info("PushListener connected")

    async def _listen_for_messages(self) -> None:
        while self._should_run and self._ws:
            try:
                message = await asyncio.wait_for(self._ws.recv(), timeout=30.0)
            except TimeoutError:
                continue
            except websockets.ConnectionClosed:
                logger.info("Connection closed by server")
                break
            self.handle_message(message)

    def handle_message(self, message: str | bytes) -> bool:
        """Forward one push payload to the engine.

        Returns:
            True if the engine scheduled a fetch for it.
        """
        handled = self._engine.process_subscription_notification(message)
        if not handled:
            logger.debug("Ignored push message: %s", str(message)[:100])
        return handled

    def _schedule_fetch(self) -> None:
        task = asyncio.get_running_loop().create_task(self._fetch_missed_changes())
        self._fetch_tasks.add(task)
        task.add_done_callback(self._fetch_tasks.discard)

    async def _fetch_missed_changes(self) -> None:
        try:
            report = await self._engine.fetch_changes()
        except Exception as e:
            logger.warning("Failed to fetch missed changes: %s", e)
            return
        total = report.updated + report.remote_deleted
        if total > 0:
            logger.info("Fetched %d missed changes", total)

    async def _close_connection(self) -> None:
        if self._ws:
            with contextlib.suppress(WebSocketException):
                await self._ws.close()
            self._ws = None
        self._connected = False
