# deletion_tracker.py
# Description: Captures local row deletions into the durable `_sync_tombstones` queue.
#
# Imports
from typing import List, TYPE_CHECKING
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import (DELETE_TRIGGER_SUFFIX, ID_COLUMN, TOMBSTONE_TABLE, quote_identifier, quote_literal)
from .models import PendingChange, Tombstone
from .sync_status import TRACKING_ENABLED_CONDITION
if TYPE_CHECKING:
    from ..DB.Local_Store import LocalStore
    from ..Transport.base import TransportState
#
########################################################################################################################
#
# Functions:


class DeletionTracker:
    def __init__(self, store: "LocalStore"):
        self.store = store

    def ensure_tombstone_table(self):
        self.store.execute(
            f"CREATE TABLE IF NOT EXISTS {quote_identifier(TOMBSTONE_TABLE)} ("
            f"id INTEGER PRIMARY KEY AUTOINCREMENT, "
            f"table_name TEXT NOT NULL, "
            f"record_id TEXT NOT NULL, "
            f"deleted_at TEXT NOT NULL)"
        )

    def install_trigger(self, table_name: str, replace: bool = False):
        """Creates the BEFORE DELETE trigger that writes one tombstone per deleted row."""
        self.ensure_tombstone_table()
        trigger = quote_identifier(table_name + DELETE_TRIGGER_SUFFIX)
        if replace:
            self.drop_trigger(table_name)
        self.store.execute(
            f"CREATE TRIGGER IF NOT EXISTS {trigger} BEFORE DELETE ON {quote_identifier(table_name)} "
            f"WHEN {TRACKING_ENABLED_CONDITION} "
            f"BEGIN "
            f"INSERT INTO {quote_identifier(TOMBSTONE_TABLE)} (table_name, record_id, deleted_at) "
            f"VALUES ({quote_literal(table_name)}, OLD.{quote_identifier(ID_COLUMN)}, "
            f"strftime('%Y-%m-%dT%H:%M:%SZ', 'now')); "
            f"END"
        )
        logger.debug(f"Delete trigger installed on '{table_name}'")

    def drop_trigger(self, table_name: str):
        self.store.execute(f"DROP TRIGGER IF EXISTS {quote_identifier(table_name + DELETE_TRIGGER_SUFFIX)}")

    def tombstones(self) -> List[Tombstone]:
        """Outstanding tombstones in deletion order."""
        rows = self.store.query(
            f"SELECT id, table_name, record_id, deleted_at FROM {quote_identifier(TOMBSTONE_TABLE)} ORDER BY id"
        )
        return [Tombstone(row["id"], row["table_name"], str(row["record_id"]), row["deleted_at"]) for row in rows]

    def drain(self, state: "TransportState") -> List[PendingChange]:
        """
        Hands every tombstone to the transport as a delete change, then removes it.

        The hand-off is optimistic: the tombstone is gone as soon as the change sits
        in the transport's pending set.
        """
        self.ensure_tombstone_table()
        drained: List[PendingChange] = []
        for tombstone in self.tombstones():
            change = tombstone.to_pending_change()
            state.add([change])
            self.store.execute(f"DELETE FROM {quote_identifier(TOMBSTONE_TABLE)} WHERE id = ?",
                               (tombstone.sequence_id,))
            drained.append(change)
        if drained:
            logger.info(f"Drained {len(drained)} tombstone(s) into the pending change set")
        return drained

    def purge_table(self, table_name: str) -> int:
        """Drops the tombstones of one table. Used when its remote zone was deleted."""
        self.ensure_tombstone_table()
        cursor = self.store.execute(f"DELETE FROM {quote_identifier(TOMBSTONE_TABLE)} WHERE table_name = ?",
                                    (table_name,))
        return cursor.rowcount

    def count(self) -> int:
        self.ensure_tombstone_table()
        row = self.store.query_one(f"SELECT COUNT(*) AS n FROM {quote_identifier(TOMBSTONE_TABLE)}")
        return row["n"] if row else 0

#
# End of deletion_tracker.py
########################################################################################################################
