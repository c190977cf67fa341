# emission.py
# Description: Resolves pending local changes into outgoing remote records for the transport.
#
# Imports
from typing import Optional, TYPE_CHECKING
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import BOOKKEEPING_COLUMNS, ID_COLUMN, SYNC_STATUS_COLUMN, quote_identifier
from ..Metrics.metrics_logger import SyncMetrics
from ..Transport.base import RecordZoneChangeBatch
from .exceptions import RecordNotFoundError
from .models import PendingChange, RecordID, RemoteRecord, SendChangesContext
from .schema_evolution import SchemaEvolutionManager
from .sync_status import SyncStatusTracker
from .value_codec import ValueCodec, discard_temporary_assets
if TYPE_CHECKING:
    from ..DB.Local_Store import LocalStore
    from ..Transport.base import RemoteTransport
#
########################################################################################################################
#
# Functions:

# Largest number of pending changes offered to the transport in one batch.
DEFAULT_MAX_BATCH_SIZE = 400


class EmissionPipeline:
    """
    Batch provider for outgoing changes.

    `next_batch` only filters the pending set; every record is resolved lazily,
    when the transport asks for it. Resolution never raises: a change that cannot
    be resolved is dropped from the pending set and yields no record.
    """

    def __init__(self, store: "LocalStore", transport: "RemoteTransport", schema: SchemaEvolutionManager,
                 status_tracker: SyncStatusTracker, codec: ValueCodec, metrics: Optional[SyncMetrics] = None,
                 max_batch_size: int = DEFAULT_MAX_BATCH_SIZE):
        self.store = store
        self.transport = transport
        self.schema = schema
        self.status_tracker = status_tracker
        self.codec = codec
        self.metrics = metrics or SyncMetrics({"component": "emission"})
        self.max_batch_size = max_batch_size

    def next_batch(self, context: SendChangesContext) -> Optional[RecordZoneChangeBatch]:
        pending = [change for change in self.transport.state.pending_changes if context.scope.contains(change)]
        if not pending:
            logger.debug(f"No pending changes to send (reason: {context.reason})")
            return None
        batch = pending[:self.max_batch_size]
        logger.debug(f"Offering {len(batch)} of {len(pending)} pending change(s) to the transport")
        return RecordZoneChangeBatch(pending_changes=batch, record_provider=self.resolve_record)

    def resolve_record(self, record_id: RecordID) -> Optional[RemoteRecord]:
        change = PendingChange.upsert(record_id.zone_name, record_id.record_name)
        try:
            record = self._resolve(record_id, change)
        except Exception:
            logger.exception(f"Could not build outgoing record for {record_id}; dropping the change")
            self.transport.state.remove([change])
            return None
        if record is not None:
            self.metrics.record_emitted(record_id.zone_name)
        return record

    def _resolve(self, record_id: RecordID, change: PendingChange) -> Optional[RemoteRecord]:
        table_name = record_id.zone_name
        if not self.schema.table_exists(table_name) or not self.schema.has_column(table_name, ID_COLUMN):
            logger.info(f"Dropping stale change {record_id}: table '{table_name}' is missing or has no id column")
            self.transport.state.remove([change])
            return None

        # Reset before reading: an edit landing after the read flips the row back to PendingUpload.
        if self.schema.has_column(table_name, SYNC_STATUS_COLUMN):
            self.status_tracker.mark_synced(table_name, record_id.record_name)

        row = self.store.query_one(
            f"SELECT * FROM {quote_identifier(table_name)} WHERE {quote_identifier(ID_COLUMN)} = ?",
            (record_id.record_name,),
        )
        if row is None:
            logger.info(f"Dropping stale change {record_id}: the row no longer exists")
            self.transport.state.remove([change])
            return None

        local_fields = {key: value for key, value in row.items() if key.lower() not in BOOKKEEPING_COLUMNS}
        try:
            record = self.transport.fetch_record(record_id)
            logger.trace(f"Merging local row onto existing remote record {record_id}")
        except RecordNotFoundError:
            record = RemoteRecord(table_name, record_id)
        except Exception as e:
            logger.warning(f"Lookup of remote record {record_id} failed ({e}); sending a fresh record")
            record = RemoteRecord(table_name, record_id)

        fetched = dict(record.fields)
        record = self.codec.apply_row_to_record(local_fields, record)
        # Downloaded assets the local row overwrote are never sent; the rest go out with the record.
        discard_temporary_assets(value for key, value in fetched.items() if record.fields.get(key) is not value)
        return record

#
# End of emission.py
########################################################################################################################
