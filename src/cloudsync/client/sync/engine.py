"""Sync engine reconciling local models with the remote record store.

This module provides:
- SyncEngine: owns the sync state machine, reacts to environment signals
  and runs zone/subscription setup, pending deletions, upload and fetch

A sync pass (perform_sync) runs, in order:
    1. Precondition check: network reachable and account available
    2. Zone and subscription setup, trusted for environment_check_interval
    3. Flush of deletions queued while offline
    4. Upload of buffered models never uploaded yet
    5. Incremental fetch of remote changes, page by page

Every entry point that touches the store funnels through a SerialTasks
instance, so at most one pass, upload, delete or fetch runs at a time.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any

from cloudsync.client.api import (
    ChangeTokenExpiredError,
    Notification,
    NotFoundError,
    Record,
    RecordStoreError,
    ServerRecordChangedError,
)
from cloudsync.client.state import LocalSettings
from cloudsync.client.sync.middlewares import (
    AccountStatusMiddleware,
    ApplicationStateMiddleware,
    NetworkStatusMiddleware,
    SignalStream,
    SignalSubscriber,
)
from cloudsync.client.sync.pending import PendingOperationsManager
from cloudsync.client.sync.retry import retry_async
from cloudsync.client.sync.serial import SerialTasks
from cloudsync.client.sync.subscriptions import SubscriptionManager
from cloudsync.client.sync.syncable import SyncableRegistry
from cloudsync.client.sync.tokens import TokenManager
from cloudsync.client.sync.types import (
    DeleteCallback,
    FetchChangesError,
    ModelsByType,
    ProgressCallback,
    SetupFailedError,
    SyncReport,
    UnknownRecordTypeError,
    UnresolvedConflictError,
    UpdateCallback,
    UploadFailedError,
)
from cloudsync.client.sync.zones import ZoneManager
from cloudsync.core.types import AccountStatus, ApplicationState, SavePolicy, SyncState

if TYPE_CHECKING:
    from cloudsync.client.api import RecordStoreClient
    from cloudsync.client.sync.syncable import LocalStore, Syncable
    from cloudsync.core.config import SyncEngineConfig

logger = logging.getLogger(__name__)


def _discard_assets(records: Iterable[Record]) -> None:
    """Remove the local files backing the records' assets."""
    for record in records:
        for asset in record.assets():
            asset.discard()


class SyncEngine:
    """Bidirectional sync between local models and one remote zone.

    Usage:
        engine = SyncEngine(config, client, local_store=store)
        engine.register(Note)
        engine.did_update_models = on_updated
        await engine.start()

        await engine.upload([note])
        await engine.delete([other_note.id])
        await engine.sync()

        await engine.stop()
    """

    def __init__(
        self,
        config: SyncEngineConfig,
        client: RecordStoreClient,
        *,
        settings: LocalSettings | None = None,
        pending_operations: PendingOperationsManager | None = None,
        network: NetworkStatusMiddleware | None = None,
        account: AccountStatusMiddleware | None = None,
        application: ApplicationStateMiddleware | None = None,
        local_store: LocalStore | None = None,
        initial_models: Iterable[Syncable] = (),
    ) -> None:
        """Initialize the sync engine.

        Args:
            config: Engine configuration (container, zone, data directory).
            client: Record store client.
            settings: Durable key-value settings; opened from config if omitted.
            pending_operations: Deferred-operation queue; opened from config if omitted.
            network: Network middleware; probes client.health_check if omitted.
            account: Account middleware; polls client.account_status if omitted.
            application: Foreground middleware; starts active if omitted.
            local_store: Optional local store seeded from and written to by the engine.
            initial_models: Locally known models at startup.
        """
        self._config = config
        self._client = client
        self._owns_settings = settings is None
        self._settings = settings or LocalSettings(config.settings_path)

        self.token_manager = TokenManager(config, self._settings)
        self.zone_manager = ZoneManager(config, self._settings, client)
        self.subscription_manager = SubscriptionManager(config, self._settings, client)
        self.pending_operations = pending_operations or PendingOperationsManager(
            config.pending_operations_path
        )

        self._network = network or NetworkStatusMiddleware(
            client.health_check, config.network_check_interval
        )
        self._account = account or AccountStatusMiddleware(
            client, config.account_check_interval, config.retry_count
        )
        self._application = application or ApplicationStateMiddleware()

        self._local_store = local_store
        self._registry = SyncableRegistry()
        self._serializer: SerialTasks[Any] = SerialTasks()

        # Models not yet confirmed uploaded, keyed by id
        self._buffer: dict[str, Syncable] = {}
        # Last known server system fields per record id
        self._synced_metadata: dict[str, bytes] = {}
        for model in initial_models:
            self._track(model)

        self._state = SyncState.IDLE
        self._state_stream: SignalStream[SyncState] = SignalStream()
        self._last_environment_update: float | None = None

        self._monitor_tasks: list[asyncio.Task[None]] = []
        self._background_tasks: set[asyncio.Task[Any]] = set()

        # Callbacks exposed to the local store
        self.did_update_models: UpdateCallback = lambda models: None
        self.did_delete_models: DeleteCallback = lambda ids: None
        self.progress_handler: ProgressCallback | None = None

    # === Observable state ===

    @property
    def state(self) -> SyncState:
        return self._state

    def sync_state(self) -> SignalSubscriber[SyncState]:
        """Subscribe to sync state transitions."""
        return self._state_stream.subscribe()

    @property
    def account_status(self) -> AccountStatus | None:
        return self._account.last_known_status

    @property
    def is_network_available(self) -> bool:
        return self._network.is_network_available

    @property
    def is_application_active(self) -> bool:
        return self._application.is_active

    @property
    def buffer(self) -> list[Syncable]:
        return list(self._buffer.values())

    @property
    def registry(self) -> SyncableRegistry:
        return self._registry

    def _set_state(self, state: SyncState) -> None:
        if state == self._state:
            return
        self._state = state
        if state == SyncState.LOADING:
            logger.debug("Sync in progress...")
        else:
            logger.debug("Sync completed")
        self._state_stream.publish(state)

    @contextlib.asynccontextmanager
    async def _loading(self) -> AsyncIterator[None]:
        self._set_state(SyncState.LOADING)
        try:
            yield
        finally:
            self._set_state(SyncState.IDLE)

    # === Registration ===

    def register(self, syncable_type: type[Syncable]) -> None:
        """Register a model type for subscriptions, decoding and conflict resolution."""
        self._registry.register(syncable_type)

    def _track(self, model: Syncable) -> None:
        if model.sync_metadata is None:
            self._buffer[model.id] = model
        else:
            self._synced_metadata[model.id] = model.sync_metadata

    def _forget(self, record_id: str) -> None:
        self._buffer.pop(record_id, None)
        self._synced_metadata.pop(record_id, None)

    # === Lifecycle ===

    async def start(self) -> None:
        """Seed the buffer from the local store and start reacting to signals."""
        if self._local_store is not None:
            for record_type in self._registry.record_types:
                for model in await self._local_store.fetch_unsynced(record_type):
                    self._track(model)

        network_updates = self._network.updates.subscribe()
        account_updates = self._account.updates.subscribe()
        application_updates = self._application.updates.subscribe()

        await self._network.start()
        await self._account.start()

        loop = asyncio.get_running_loop()
        self._monitor_tasks = [
            loop.create_task(self._monitor_network(network_updates)),
            loop.create_task(self._monitor_account(account_updates)),
            loop.create_task(self._monitor_application(application_updates)),
        ]
        logger.info("Sync engine started for zone %s", self._config.zone_name)

    async def stop(self) -> None:
        """Stop monitoring and cancel scheduled work."""
        await self._network.stop_monitoring()
        await self._account.stop_monitoring()
        await self._application.stop_monitoring()

        tasks = [*self._monitor_tasks, *self._background_tasks]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._monitor_tasks = []
        self._background_tasks.clear()
        self._state_stream.close()

        if self._owns_settings:
            self._settings.close()
        logger.info("Sync engine stopped")

    async def _monitor_network(self, updates: SignalSubscriber[bool]) -> None:
        async for available in updates:
            if available:
                logger.info("Network became available - attempting sync")
                await self._sync_from_trigger("network became available")
            else:
                logger.info("Network became unavailable")

    async def _monitor_account(self, updates: SignalSubscriber[AccountStatus]) -> None:
        async for status in updates:
            if status == AccountStatus.AVAILABLE:
                logger.info("Account became available - attempting sync")
                await self._sync_from_trigger("account became available")
            else:
                logger.info("Account status is %s", status.description)

    async def _monitor_application(self, updates: SignalSubscriber[ApplicationState]) -> None:
        async for state in updates:
            if state == ApplicationState.ACTIVE:
                logger.info("App became active - attempting sync")
                await self._sync_from_trigger("app became active")
            else:
                logger.debug("App resigned active")

    async def _sync_from_trigger(self, reason: str) -> None:
        try:
            await self._serializer.add(self.perform_sync)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to sync when %s", reason)

    def _spawn(self, make_work: Callable[[], Awaitable[Any]], reason: str) -> None:
        async def guarded() -> None:
            try:
                await make_work()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Failed to run %s", reason)

        task = asyncio.get_running_loop().create_task(guarded())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # === Serialized entry points ===

    async def sync(self) -> SyncReport:
        """Run a full sync pass behind any work already queued."""
        result: SyncReport = await self._serializer.add(self.perform_sync)
        return result

    async def fetch_changes(self) -> SyncReport:
        """Run a fetch-only pass behind any work already queued."""
        result: SyncReport = await self._serializer.add(self.fetch_remote_changes)
        return result

    async def upload(self, models: list[Syncable]) -> None:
        """Buffer models and upload them, behind any work already queued."""
        await self._serializer.add(lambda: self._upload(models))

    async def delete(self, record_ids: list[str]) -> list[str]:
        """Delete records remotely, or queue the deletion durably if offline.

        Returns:
            Ids confirmed deleted now (empty if the deletion was queued).
        """
        result: list[str] = await self._serializer.add(lambda: self._delete(record_ids))
        return result

    async def delete_models(self, models: list[Syncable]) -> list[str]:
        return await self.delete([model.id for model in models])

    def process_subscription_notification(self, payload: dict[str, Any] | str | bytes) -> bool:
        """Schedule a fetch if a push payload belongs to this engine.

        Must be called from the event loop thread.

        Returns:
            True if a fetch was scheduled.
        """
        notification = Notification.from_payload(payload)
        if notification is None:
            logger.error("Not a record store notification")
            return False

        if not self.subscription_manager.should_handle_subscription_id(
            notification.subscription_id
        ):
            logger.debug("Not our subscription ID: %s", notification.subscription_id)
            return False

        logger.debug("Received remote notification for zone %s", self._config.zone_name)
        self._spawn(self.fetch_changes, "fetch after push notification")
        return True

    # === Units of work (run through the serializer) ===

    async def sync_conditions_met(self) -> bool:
        if not self._network.is_network_available:
            logger.warning("Cannot start sync - no network connection")
            return False

        if not await self.request_permission():
            logger.warning("Cannot start sync - account not available")
            return False

        return True

    async def request_permission(self) -> bool:
        status = await self._account.refresh_status()
        return status == AccountStatus.AVAILABLE

    async def perform_sync(self) -> SyncReport:
        """Run one full sync pass.

        Returns quietly with report.skipped set if the network or the
        account is unavailable.

        Raises:
            SetupFailedError, ZoneSetupError, SubscriptionSetupError:
                If the zone or subscriptions could not be prepared.
            UploadFailedError, FetchChangesError, SyncError, RecordStoreError:
                If upload or fetch failed.
        """
        report = SyncReport()
        if not await self.sync_conditions_met():
            report.skipped = True
            return report

        async with self._loading():
            if not await self._prepare_cloud_environment():
                raise SetupFailedError("Cloud environment preparation failed")

            try:
                report.deleted = await self.process_pending_deletions(report)
                report.uploaded = await self.upload_local_data_not_uploaded_yet()
                await self._fetch_changes(report)
            except Exception as e:
                logger.error("Sync failed: %s", e)
                raise

        logger.info(
            "Sync done: %d deleted, %d uploaded, %d updated, %d removed remotely",
            report.deleted,
            report.uploaded,
            report.updated,
            report.remote_deleted,
        )
        return report

    async def fetch_remote_changes(self) -> SyncReport:
        report = SyncReport()
        if not await self.sync_conditions_met():
            report.skipped = True
            return report
        async with self._loading():
            await self._fetch_changes(report)
        return report

    async def _prepare_cloud_environment(self) -> bool:
        last = self._last_environment_update
        if last is not None:
            elapsed = time.monotonic() - last
            if elapsed < self._config.environment_check_interval:
                logger.debug(
                    "Environment was recently checked (%d minutes ago), skipping preparation",
                    int(elapsed / 60),
                )
                return True
            logger.debug(
                "Environment check interval exceeded (%d minutes), preparing environment",
                int(elapsed / 60),
            )
        else:
            logger.debug("No previous environment setup found, preparing environment")

        # The zone must exist before subscriptions can reference it
        zone_created = await self.zone_manager.create_custom_zone_if_needed()
        subscriptions_created = await self.subscription_manager.create_private_subscriptions_if_needed(
            self._registry.record_types
        )
        self._last_environment_update = time.monotonic()
        logger.debug("Cloud environment preparation done")
        return zone_created and subscriptions_created

    # === Deletions ===

    async def process_pending_deletions(self, report: SyncReport | None = None) -> int:
        """Flush deletions queued while offline.

        Failures are logged, added to report.errors when a report is given,
        and leave the ids queued for the next pass.

        Returns:
            Number of ids confirmed deleted.
        """
        pending = self.pending_operations.get_pending_deletions()
        if not pending:
            return 0

        logger.debug("Processing %d pending deletions", len(pending))
        try:
            deleted = await self._delete_records(pending)
        except RecordStoreError as e:
            logger.error("Failed to process pending deletions: %s", e)
            if report is not None:
                report.errors.append(f"Failed to process pending deletions: {e}")
            return 0

        self.pending_operations.remove_pending_deletions(deleted)
        for record_id in deleted:
            self._forget(record_id)
        await self._deliver_deletions(deleted)
        return len(deleted)

    async def _delete(self, record_ids: list[str]) -> list[str]:
        if not record_ids:
            return []
        if not await self.sync_conditions_met():
            self.pending_operations.add_pending_deletions(record_ids)
            return []

        async with self._loading():
            try:
                deleted = await self._delete_records(record_ids)
            except RecordStoreError:
                self.pending_operations.add_pending_deletions(record_ids)
                raise

            failed = [i for i in record_ids if i not in set(deleted)]
            if failed:
                self.pending_operations.add_pending_deletions(failed)
            for record_id in deleted:
                self._forget(record_id)
            await self._deliver_deletions(deleted)
            return deleted

    async def _delete_records(self, record_ids: list[str]) -> list[str]:
        """Delete a batch, treating already-absent records as deleted.

        Returns:
            Ids confirmed deleted. Ids that failed individually are logged
            and left out.
        """
        logger.debug("Deleting %d record(s)", len(record_ids))
        result = await self._client.modify_records(
            self._config.zone_id, deleting=record_ids
        )

        total = len(record_ids)
        deleted: list[str] = []
        for record_id in record_ids:
            item = result.delete_results.get(record_id)
            if item is None:
                logger.error("No delete result for record %s", record_id)
                continue
            try:
                item.get()
            except NotFoundError:
                logger.debug("Record %s already deleted on server", record_id)
            except RecordStoreError as e:
                logger.error("Failed to delete record %s: %s", record_id, e)
                continue
            deleted.append(record_id)
            self._report_progress(len(deleted), total)
        return deleted

    # === Upload ===

    async def _upload(self, models: list[Syncable]) -> None:
        for model in models:
            self._buffer[model.id] = model
        if not await self.sync_conditions_met():
            logger.debug("Keeping %d model(s) buffered until sync is possible", len(models))
            return

        ids = [model.id for model in models]
        async with self._loading():
            await retry_async(
                lambda: self._upload_buffered(ids),
                attempts=self._config.retry_count,
                on_exhausted=lambda e: UploadFailedError(f"Upload failed: {e}"),
                description="upload",
            )

    async def upload_local_data_not_uploaded_yet(self) -> int:
        """Upload buffered models that were never uploaded.

        Returns:
            Number of models confirmed uploaded.
        """
        ids = [i for i, model in self._buffer.items() if model.sync_metadata is None]
        if not ids:
            return 0

        logger.debug("Found %d local model(s) which haven't been uploaded yet", len(ids))
        await retry_async(
            lambda: self._upload_buffered(ids),
            attempts=self._config.retry_count,
            on_exhausted=lambda e: UploadFailedError(f"Upload of local data failed: {e}"),
            description="upload of local data",
        )
        return sum(1 for i in ids if i not in self._buffer)

    async def _upload_buffered(self, ids: list[str]) -> None:
        # Models confirmed by an earlier attempt are no longer buffered
        models = [self._buffer[i] for i in ids if i in self._buffer]
        if not models:
            return
        records = [m.to_record(self._config.zone_id) for m in models]
        try:
            await self._upload_records(records)
        finally:
            _discard_assets(records)

    async def _upload_records(self, records: list[Record]) -> None:
        """Save records and apply the per-record outcomes.

        Saved records update their buffered models. A conflict is resolved
        by the record type's resolver and resubmitted once. Any other
        per-record failure is raised after the successful records have
        been applied.
        """
        logger.debug("Uploading %d record(s)", len(records))
        zone_id = self._config.zone_id
        result = await self._client.modify_records(zone_id, saving=records)

        total = len(records)
        saved: list[Record] = []
        first_error: Exception | None = None

        for record in records:
            item = result.save_results.get(record.record_name)
            if item is None:
                first_error = first_error or RecordStoreError(
                    f"No save result for record {record.record_name}"
                )
                continue
            try:
                saved_record = item.get()
            except ServerRecordChangedError as e:
                try:
                    saved_record = await self._resolve_conflict(e)
                except Exception as resolve_error:
                    first_error = first_error or resolve_error
                    continue
            except RecordStoreError as e:
                logger.error("Failed to save record %s: %s", record.record_name, e)
                first_error = first_error or e
                continue

            if saved_record is not None:
                saved.append(saved_record)
                self._report_progress(len(saved), total)

        await self._update_local_models_after_upload(saved)
        if first_error is not None:
            raise first_error

    async def _resolve_conflict(self, error: ServerRecordChangedError) -> Record | None:
        conflict = error.conflict_data
        if conflict is None:
            raise error

        record_type = conflict.local_record.record_type
        syncable_type = self._registry.get_type(record_type)
        if syncable_type is None:
            raise UnknownRecordTypeError(record_type)

        logger.info("Resolving conflict for record %s", conflict.local_record.record_name)
        resolved = syncable_type.resolve_conflict(conflict.local_record, conflict.remote_record)

        try:
            result = await self._client.modify_records(
                self._config.zone_id,
                saving=[resolved],
                save_policy=SavePolicy.IF_SERVER_RECORD_UNCHANGED,
            )
        finally:
            _discard_assets([resolved])
        item = result.save_results.get(resolved.record_name)
        if item is None:
            raise RecordStoreError(f"No save result for resolved record {resolved.record_name}")
        try:
            return item.get()
        except ServerRecordChangedError as again:
            raise UnresolvedConflictError(resolved.record_name, again.conflict_data) from again

    async def _update_local_models_after_upload(self, records: list[Record]) -> None:
        models_by_type: ModelsByType = {}
        for record in records:
            model = self._buffer.pop(record.record_name, None)
            if model is None:
                continue
            model.sync_metadata = record.encoded_system_fields
            self._synced_metadata[model.id] = model.sync_metadata
            models_by_type.setdefault(record.record_type, []).append(model)

        await self._deliver_updates(models_by_type)

    # === Fetch ===

    async def _fetch_changes(self, report: SyncReport) -> None:
        await retry_async(
            lambda: self._fetch_with_token_reset(report),
            attempts=self._config.retry_count,
            on_exhausted=lambda e: FetchChangesError(f"Failed fetching remote changes: {e}"),
            description="fetch of remote changes",
        )

    async def _fetch_with_token_reset(self, report: SyncReport) -> None:
        try:
            await self._fetch_pages(report)
        except ChangeTokenExpiredError:
            logger.warning("Change token expired, resetting token and fetching everything")
            self.token_manager.reset()
            await self._fetch_pages(report)

    async def _fetch_pages(self, report: SyncReport) -> None:
        more_coming = True
        while more_coming:
            changes = await self._client.record_zone_changes(
                self._config.zone_id, since=self.token_manager.change_token
            )
            try:
                await self._commit_server_changes(
                    changes.records,
                    [d.record_name for d in changes.deleted],
                    report,
                )
            finally:
                _discard_assets(changes.records)
            # Committed pages are never fetched again
            self.token_manager.change_token = changes.change_token
            more_coming = changes.more_coming

        if not report.updated and not report.remote_deleted:
            logger.info("Finished record zone changes fetch with no changes")

    def _is_echo(self, record: Record) -> bool:
        """Whether a fetched record is this client's own last upload."""
        metadata = record.encoded_system_fields
        if self._synced_metadata.get(record.record_name) == metadata:
            return True
        buffered = self._buffer.get(record.record_name)
        return buffered is not None and buffered.sync_metadata == metadata

    async def _commit_server_changes(
        self,
        records: list[Record],
        deleted_ids: list[str],
        report: SyncReport,
    ) -> None:
        if not records and not deleted_ids:
            return
        logger.info(
            "Will commit %d changed record(s) and %d deleted record(s)",
            len(records),
            len(deleted_ids),
        )

        models_by_type: ModelsByType = {}
        for record in records:
            if self._is_echo(record):
                logger.debug("Skipping echo of own upload for %s", record.record_name)
                continue
            try:
                model = self._registry.create_instance(record)
            except Exception as e:
                logger.error("Error decoding model from record %s: %s", record.record_name, e)
                continue
            if model is None:
                logger.debug("No registered type for record type %s", record.record_type)
                continue
            model.sync_metadata = record.encoded_system_fields
            self._synced_metadata[model.id] = model.sync_metadata
            models_by_type.setdefault(record.record_type, []).append(model)

        for record_id in deleted_ids:
            self._forget(record_id)

        await self._deliver_updates(models_by_type)
        await self._deliver_deletions(deleted_ids)
        report.updated += sum(len(models) for models in models_by_type.values())
        report.remote_deleted += len(deleted_ids)

    # === Delivery to the local store ===

    async def _deliver_updates(self, models_by_type: ModelsByType) -> None:
        if not models_by_type:
            return
        self.did_update_models(models_by_type)
        if self._local_store is not None:
            for models in models_by_type.values():
                for model in models:
                    await self._local_store.save(model)

    async def _deliver_deletions(self, record_ids: list[str]) -> None:
        if not record_ids:
            return
        self.did_delete_models(list(record_ids))
        if self._local_store is not None:
            await self._local_store.delete(list(record_ids))

    def _report_progress(self, completed: int, total: int) -> None:
        if self.progress_handler is not None and total:
            self.progress_handler(completed / total)
