# ingestion.py
# Description: Applies batches of remote modifications and deletions to the local store.
#
"""
ingestion.py
------------

Remote changes arrive as one batch of modified records plus one list of deleted
record ids. The whole batch is applied in a single local transaction, with the
tracking triggers suppressed so remote-origin writes never look like local
edits.

Conflict policy: remote values win for every field the incoming record reports
as changed (or every field, when it reports none). Local edits to other fields
of the same row are kept. Every row touched by ingestion ends up Synced.

Failures are contained at the narrowest scope available:

- a record that cannot be applied is rolled back to its own savepoint and skipped;
- a row whose bulk INSERT/UPDATE is rejected is written one field at a time,
  and only the rejected fields are lost;
- nothing raised while applying a batch propagates to the transport.
"""
# Imports
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, TYPE_CHECKING
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import BOOKKEEPING_COLUMNS, ID_COLUMN, SYNC_STATUS_COLUMN, is_reserved_table, quote_identifier
from ..Metrics.metrics_logger import SyncMetrics
from .models import RecordDeletion, RemoteRecord
from .schema_evolution import SchemaEvolutionManager
from .sync_status import SyncStatus, SyncStatusTracker
from .value_codec import ValueCodec, discard_temporary_assets, values_equal
if TYPE_CHECKING:
    from ..DB.Local_Store import LocalStore
#
########################################################################################################################
#
# Functions:


@dataclass
class IngestionReport:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    field_failures: int = 0

    @property
    def applied(self) -> int:
        return self.inserted + self.updated + self.unchanged + self.deleted


class IngestionPipeline:
    def __init__(self, store: "LocalStore", schema: SchemaEvolutionManager, status_tracker: SyncStatusTracker,
                 codec: ValueCodec, metrics: Optional[SyncMetrics] = None):
        self.store = store
        self.schema = schema
        self.status_tracker = status_tracker
        self.codec = codec
        self.metrics = metrics or SyncMetrics({"component": "ingestion"})

    def ingest(self, modifications: Iterable[RemoteRecord], deletions: Iterable[RecordDeletion]) -> IngestionReport:
        """Applies one delivered batch. Never raises."""
        report = IngestionReport()
        modifications = list(modifications)
        deletions = list(deletions)
        if not modifications and not deletions:
            return report

        try:
            with self.store.transaction() as conn:
                with self.status_tracker.suppressed_tracking(conn):
                    for record in modifications:
                        self._apply_record_safely(record, report)
                    for deletion in deletions:
                        self._apply_deletion_safely(deletion, report)
        except Exception:
            logger.exception(f"Ingestion batch of {len(modifications)} modification(s) and "
                             f"{len(deletions)} deletion(s) failed")

        logger.info(f"Ingested batch: {report}")
        self.metrics.batch_ingested(report)
        return report

    # --- Modifications ---
    def _apply_record_safely(self, record: RemoteRecord, report: IngestionReport):
        try:
            if is_reserved_table(record.record_type):
                logger.debug(f"Skipping record {record.record_id} of reserved type '{record.record_type}'")
                report.skipped += 1
                return
            try:
                with self.store.savepoint("ingest_record"):
                    self._apply_record(record, report)
            except Exception:
                logger.exception(f"Could not apply remote record {record.record_id}; skipping it")
                report.failed += 1
        finally:
            # Downloaded blobs were copied into the row (or are unusable); their temp files go either way.
            discard_temporary_assets(record.fields.values())

    def _apply_record(self, record: RemoteRecord, report: IngestionReport):
        table_name = record.record_type
        self.schema.ensure_table(table_name, record)
        self.schema.ensure_status_column(table_name)

        row = self.codec.record_to_row(record)
        row_id = record.record_id.record_name
        current = self.store.query_one(
            f"SELECT * FROM {quote_identifier(table_name)} WHERE {quote_identifier(ID_COLUMN)} = ?", (row_id,)
        )
        if current is None:
            self._insert_row(table_name, row_id, row, report)
            report.inserted += 1
        elif self._update_row(table_name, row_id, record, row, current, report):
            report.updated += 1
        else:
            report.unchanged += 1

    def _insert_row(self, table_name: str, row_id: str, row: Dict[str, Any], report: IngestionReport):
        table = quote_identifier(table_name)
        columns = [ID_COLUMN, SYNC_STATUS_COLUMN] + list(row.keys())
        values = [row_id, int(SyncStatus.SYNCED)] + list(row.values())
        placeholders = ", ".join("?" for _ in columns)
        try:
            with self.store.savepoint("ingest_insert"):
                self.store.execute(
                    f"INSERT INTO {table} ({', '.join(quote_identifier(c) for c in columns)}) VALUES ({placeholders})",
                    values,
                )
            return
        except Exception as e:
            logger.warning(f"Bulk insert of {table_name}/{row_id} failed ({e}); falling back to per-field writes")

        self.store.execute(
            f"INSERT INTO {table} ({quote_identifier(ID_COLUMN)}, {quote_identifier(SYNC_STATUS_COLUMN)}) "
            f"VALUES (?, ?)",
            (row_id, int(SyncStatus.SYNCED)),
        )
        self._write_fields_individually(table_name, row_id, row, report)

    def _update_row(self, table_name: str, row_id: str, record: RemoteRecord, row: Dict[str, Any],
                    current: Dict[str, Any], report: IngestionReport) -> bool:
        """Writes the genuinely changed fields and resets the row to Synced. Returns True if a field changed."""
        columns_by_lower = {name.lower(): name for name in current}
        changed: Dict[str, Any] = {}
        for key in record.keys_to_consider():
            if key.lower() in BOOKKEEPING_COLUMNS:
                continue
            if key in row:
                incoming = row[key]
            elif key in record:
                # Present remotely but of a type the codec does not handle.
                continue
            else:
                # Reported as changed but absent: the remote field was cleared.
                incoming = None
            column = columns_by_lower.get(key.lower())
            if column is None:
                if incoming is None:
                    continue
                column = key
            if column in current and values_equal(incoming, current[column]):
                continue
            changed[column] = incoming

        table = quote_identifier(table_name)
        where = f"WHERE {quote_identifier(ID_COLUMN)} = ?"
        status_assignment = f"{quote_identifier(SYNC_STATUS_COLUMN)} = {int(SyncStatus.SYNCED)}"
        if not changed:
            self.store.execute(f"UPDATE {table} SET {status_assignment} {where}", (row_id,))
            return False

        assignments = ", ".join(f"{quote_identifier(column)} = ?" for column in changed)
        try:
            with self.store.savepoint("ingest_update"):
                self.store.execute(f"UPDATE {table} SET {assignments}, {status_assignment} {where}",
                                   list(changed.values()) + [row_id])
        except Exception as e:
            logger.warning(f"Bulk update of {table_name}/{row_id} failed ({e}); falling back to per-field writes")
            self.store.execute(f"UPDATE {table} SET {status_assignment} {where}", (row_id,))
            self._write_fields_individually(table_name, row_id, changed, report)
        logger.debug(f"Updated {table_name}/{row_id}: {sorted(changed)}")
        return True

    def _write_fields_individually(self, table_name: str, row_id: str, fields: Dict[str, Any],
                                   report: IngestionReport):
        table = quote_identifier(table_name)
        for column, value in fields.items():
            try:
                with self.store.savepoint("ingest_field"):
                    self.store.execute(
                        f"UPDATE {table} SET {quote_identifier(column)} = ? WHERE {quote_identifier(ID_COLUMN)} = ?",
                        (value, row_id),
                    )
            except Exception as e:
                logger.error(f"Could not write field '{column}' of {table_name}/{row_id}: {e}")
                report.field_failures += 1

    # --- Deletions ---
    def _apply_deletion_safely(self, deletion: RecordDeletion, report: IngestionReport):
        table_name = deletion.record_type or deletion.record_id.zone_name
        if is_reserved_table(table_name):
            report.skipped += 1
            return
        try:
            with self.store.savepoint("ingest_delete"):
                if not self.schema.table_exists(table_name):
                    logger.debug(f"Remote deletion {deletion.record_id} targets missing table '{table_name}'")
                    return
                cursor = self.store.execute(
                    f"DELETE FROM {quote_identifier(table_name)} WHERE {quote_identifier(ID_COLUMN)} = ?",
                    (deletion.record_id.record_name,),
                )
                if cursor.rowcount:
                    report.deleted += 1
        except Exception:
            logger.exception(f"Could not apply remote deletion {deletion.record_id}")
            report.failed += 1

#
# End of ingestion.py
########################################################################################################################
