# orchestrator.py
# Description: Drives setup and the manual sync cycle, and handles transport events.
#
"""
orchestrator.py
---------------

`SyncOrchestrator` composes the sync components for one local store and acts as
the transport's delegate:

- `start_sync()` validates configuration, restores the persisted cursor, checks
  the remote account, installs change tracking and makes sure every local table
  has a remote zone.
- `sync()` runs one cycle: drain tombstones and send them, promote PendingUpload
  rows to Queued, send everything queued, then fetch remote changes.
- `handle_event()` routes transport events to ingestion, status bookkeeping and
  state persistence.
- `next_record_zone_change_batch()` answers the transport's pull for outgoing
  records through the emission pipeline.

Only `ConfigurationError` escapes `sync()`. Every other failure is logged,
recorded in the returned `SyncReport` and retried on the next call.
"""
# Imports
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, TYPE_CHECKING
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import ID_COLUMN, is_reserved_table, quote_identifier
from ..config import SyncSettings, load_sync_settings, validate_service_identifier
from ..Metrics.metrics_logger import SyncMetrics
from ..Transport.base import AccountStatus, RecordZoneChangeBatch, check_zone_results
from .deletion_tracker import DeletionTracker
from .emission import EmissionPipeline
from .events import (LIFECYCLE_EVENTS, AccountChange, AccountChangeType, FetchedDatabaseChanges,
                     FetchedRecordZoneChanges, SentDatabaseChanges, SentRecordZoneChanges, StateUpdate, SyncEvent)
from .exceptions import ConfigurationError
from .ingestion import IngestionPipeline, IngestionReport
from .models import ChangeScope, PendingChange, SendChangesContext
from .schema_evolution import SchemaEvolutionManager
from .state_persistence import SyncStatePersistence
from .sync_status import SyncStatus, SyncStatusTracker
from .value_codec import ValueCodec
if TYPE_CHECKING:
    from ..DB.Local_Store import LocalStore
    from ..Transport.base import RemoteTransport
#
########################################################################################################################
#
# Functions:


@dataclass
class SyncReport:
    tombstones_drained: int = 0
    rows_queued: int = 0
    records_saved: int = 0
    records_deleted: int = 0
    records_failed: int = 0
    changes_fetched: int = 0
    send_succeeded: bool = False
    fetch_succeeded: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class SyncOrchestrator:
    def __init__(self, store: "LocalStore", transport: "RemoteTransport", settings: Optional[SyncSettings] = None,
                 metrics: Optional[SyncMetrics] = None):
        self.store = store
        self.transport = transport
        self.settings = settings or load_sync_settings()
        self.metrics = metrics or SyncMetrics({"store": store.db_path_str})

        self.codec = ValueCodec(self.settings.asset_staging_dir)
        self.status_tracker = SyncStatusTracker(store)
        self.deletion_tracker = DeletionTracker(store)
        self.schema = SchemaEvolutionManager(store, self.status_tracker, self.deletion_tracker)
        self.ingestion = IngestionPipeline(store, self.schema, self.status_tracker, self.codec, self.metrics)
        self.emission = EmissionPipeline(store, transport, self.schema, self.status_tracker, self.codec, self.metrics)
        self.persistence = SyncStatePersistence(None if store.is_memory_db else store.db_path,
                                                self.settings.state_file_suffix)

        self.last_ingestion_report: Optional[IngestionReport] = None
        self._started = False
        self._event_handlers: Dict[type, Callable] = {
            StateUpdate: self._handle_state_update,
            AccountChange: self._handle_account_change,
            FetchedDatabaseChanges: self._handle_fetched_database_changes,
            FetchedRecordZoneChanges: self._handle_fetched_record_zone_changes,
            SentDatabaseChanges: self._handle_sent_database_changes,
            SentRecordZoneChanges: self._handle_sent_record_zone_changes,
        }
        transport.set_delegate(self)

    @property
    def started(self) -> bool:
        return self._started

    # --- Setup ---
    def start_sync(self):
        """
        One-time setup. Calling it again only re-validates the configuration.

        Raises:
            ConfigurationError: If the service identifier is missing or malformed.
        """
        validate_service_identifier(self.settings.service_identifier)
        if self._started:
            return

        logger.info(f"Starting sync for {self.store.db_path_str} with service '{self.settings.service_identifier}'")
        cursor = self.persistence.load()
        if cursor is not None:
            try:
                self.transport.state.restore(cursor)
            except ValueError as e:
                logger.warning(f"Ignoring persisted sync state: {e}")

        self._check_account()

        self.status_tracker.ensure_meta_table()
        self.deletion_tracker.ensure_tombstone_table()
        tables = self.schema.synced_tables()
        for table_name in tables:
            try:
                self.schema.install_tracking(table_name, replace=True)
            except Exception:
                logger.exception(f"Could not install change tracking on '{table_name}'")

        self._save_zones(tables)
        self._started = True

    def _check_account(self):
        try:
            status = self.transport.account_status()
        except Exception as e:
            logger.warning(f"Could not determine remote account status: {e}")
            return
        if status is AccountStatus.AVAILABLE:
            logger.debug("Remote account is available")
        else:
            logger.warning(f"Remote account is not available ({status.value}); sync will retry on each cycle")

    def _save_zones(self, zone_names: List[str]):
        if not zone_names:
            return
        try:
            saved, failed = check_zone_results(self.transport.save_zones(zone_names))
        except Exception as e:
            logger.warning(f"Could not set up remote zones: {e}")
            return
        for zone_name, error in failed.items():
            logger.error(f"Could not create remote zone '{zone_name}': {error}")
        logger.debug(f"Remote zones ready: {saved}")

    # --- Sync cycle ---
    def sync(self) -> SyncReport:
        """
        Runs one sync cycle.

        Raises:
            ConfigurationError: If the configuration is invalid. Nothing else propagates.
        """
        validate_service_identifier(self.settings.service_identifier)
        if not self._started:
            self.start_sync()

        started = time.perf_counter()
        report = SyncReport()
        self._run_phase("drain tombstones", report, self._drain_and_send_tombstones)
        self._run_phase("queue pending rows", report, self._queue_pending_rows)
        self.persistence.save(self.transport.state.serialization)
        report.send_succeeded = self._run_phase("send changes", report, self._send_all)
        report.fetch_succeeded = self._run_phase("fetch changes", report, self._fetch)

        pending = len(self.transport.state.pending_changes)
        self.metrics.cycle_finished(report, time.perf_counter() - started, pending)
        logger.info(f"Sync cycle finished: {report}")
        return report

    def _run_phase(self, name: str, report: SyncReport, phase: Callable[[SyncReport], None]) -> bool:
        try:
            phase(report)
            return True
        except ConfigurationError:
            raise
        except Exception as e:
            logger.opt(exception=e).error(f"Sync phase '{name}' failed: {e}")
            report.errors.append(f"{name}: {e}")
            return False

    def _drain_and_send_tombstones(self, report: SyncReport):
        drained = self.deletion_tracker.drain(self.transport.state)
        report.tombstones_drained = len(drained)
        if not drained:
            return
        self.persistence.save(self.transport.state.serialization)
        scope = ChangeScope(record_ids=frozenset(change.record_id for change in drained))
        summary = self.transport.send_changes(scope=scope, reason="tombstones")
        report.records_deleted += summary.deleted

    def _queue_pending_rows(self, report: SyncReport):
        for table_name in self.schema.synced_tables():
            try:
                if not self.schema.has_column(table_name, ID_COLUMN):
                    continue
                # Rows of a table that predates sync have never been uploaded.
                if self.schema.ensure_status_column(table_name, SyncStatus.PENDING_UPLOAD):
                    self._save_zones([table_name])
                row_ids = self.status_tracker.promote_pending(table_name)
            except Exception as e:
                logger.opt(exception=e).error(f"Could not queue pending rows of '{table_name}': {e}")
                report.errors.append(f"queue {table_name}: {e}")
                continue
            self.transport.state.add(PendingChange.upsert(table_name, row_id) for row_id in row_ids)
            report.rows_queued += len(row_ids)

    def _send_all(self, report: SyncReport):
        summary = self.transport.send_changes(reason="sync")
        report.records_saved += summary.saved
        report.records_deleted += summary.deleted
        report.records_failed += summary.failed

    def _fetch(self, report: SyncReport):
        report.changes_fetched = self.transport.fetch_changes()

    # --- Transport delegate ---
    def next_record_zone_change_batch(self, context: SendChangesContext) -> Optional[RecordZoneChangeBatch]:
        return self.emission.next_batch(context)

    def handle_event(self, event: SyncEvent):
        handler = self._event_handlers.get(type(event))
        if handler is None:
            if not isinstance(event, LIFECYCLE_EVENTS):
                logger.warning(f"Ignoring unexpected transport event {type(event).__name__}")
            return
        try:
            handler(event)
        except Exception:
            logger.exception(f"Handling {type(event).__name__} failed")

    def _handle_state_update(self, event: StateUpdate):
        self.persistence.save(event.cursor)

    def _handle_account_change(self, event: AccountChange):
        if event.change_type is AccountChangeType.SIGN_OUT:
            logger.warning("Remote account signed out; local data is kept and sync will resume on sign-in")
        else:
            logger.info(f"Remote account changed: {event.change_type.value}")

    def _handle_fetched_database_changes(self, event: FetchedDatabaseChanges):
        for zone_name in event.deleted_zones:
            if is_reserved_table(zone_name):
                continue
            logger.warning(f"Remote zone '{zone_name}' was deleted; dropping the local table")
            with self.store.transaction():
                self.store.execute(f"DROP TABLE IF EXISTS {quote_identifier(zone_name)}")
                self.deletion_tracker.purge_table(zone_name)
            stale = [c for c in self.transport.state.pending_changes if c.record_id.zone_name == zone_name]
            self.transport.state.remove(stale)

    def _handle_fetched_record_zone_changes(self, event: FetchedRecordZoneChanges):
        self.last_ingestion_report = self.ingestion.ingest(event.modifications, event.deletions)

    def _handle_sent_database_changes(self, event: SentDatabaseChanges):
        logger.debug(f"Remote zones saved: {event.saved_zones}")

    def _handle_sent_record_zone_changes(self, event: SentRecordZoneChanges):
        for record in event.saved_records:
            table_name = record.record_id.zone_name
            if not self.schema.table_exists(table_name):
                continue
            self.schema.ensure_status_column(table_name)
            self.status_tracker.mark_synced(table_name, record.record_id.record_name, only_queued=True)

        for failed in event.failed_record_saves:
            record_id = failed.record.record_id
            logger.warning(f"Remote save of {record_id} failed: {failed.error}. It will be retried next sync.")
            if self.schema.table_exists(record_id.zone_name):
                self.status_tracker.mark_pending(record_id.zone_name, record_id.record_name)

        for record_id in event.deleted_record_ids:
            logger.debug(f"Remote deletion of {record_id} confirmed")

#
# End of orchestrator.py
########################################################################################################################
