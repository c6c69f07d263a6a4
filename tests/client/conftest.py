"""Shared fixtures for client tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from pathlib import Path

import pytest

from cloudsync.client.state import LocalSettings
from cloudsync.client.sync.engine import SyncEngine
from cloudsync.client.sync.middlewares import (
    AccountStatusMiddleware,
    ApplicationStateMiddleware,
    NetworkStatusMiddleware,
)
from cloudsync.core.config import SyncEngineConfig
from tests.client.fakes import FakeRecordStore, MemoryLocalStore, Note, Tag


@pytest.fixture
def engine_config(tmp_path: Path) -> SyncEngineConfig:
    """Engine configuration with state under a temporary directory."""
    return SyncEngineConfig(
        container_identifier="com.example.notes",
        zone_name="Notes",
        data_dir=tmp_path / "engine",
        network_check_interval=3600.0,
        account_check_interval=3600.0,
    )


@pytest.fixture
def settings(engine_config: SyncEngineConfig) -> Iterator[LocalSettings]:
    """Durable settings for the test engine."""
    local = LocalSettings(engine_config.settings_path)
    yield local
    local.close()


@pytest.fixture
def store() -> FakeRecordStore:
    """Empty in-memory record store."""
    return FakeRecordStore()


@pytest.fixture
def local_store() -> MemoryLocalStore:
    return MemoryLocalStore()


@pytest.fixture
async def make_engine(
    engine_config: SyncEngineConfig,
    settings: LocalSettings,
    store: FakeRecordStore,
) -> AsyncIterator[Callable[..., Awaitable[SyncEngine]]]:
    """Factory for engines wired to the fake store, with Note and Tag registered by default.

    Network status is sampled once so that sync conditions can be met
    without starting the monitoring tasks.
    """
    engines: list[SyncEngine] = []

    async def factory(types: tuple[type, ...] = (Note, Tag), **kwargs: object) -> SyncEngine:
        network = NetworkStatusMiddleware(store.health_check, interval=3600.0)
        await network.refresh()
        kwargs.setdefault("network", network)
        kwargs.setdefault("account", AccountStatusMiddleware(store, interval=3600.0))
        kwargs.setdefault("application", ApplicationStateMiddleware())
        engine = SyncEngine(engine_config, store, settings=settings, **kwargs)  # type: ignore[arg-type]
        for syncable_type in types:
            engine.register(syncable_type)
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        await engine.stop()

