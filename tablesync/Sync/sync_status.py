# sync_status.py
# Description: Per-row sync status state machine kept in the `_sync_status` bookkeeping column.
#
# Local edits move a row from Synced to PendingUpload through SQLite triggers, so
# application code writing to the store never has to know about sync. The engine
# then promotes PendingUpload rows to Queued when it hands them to the transport,
# and resets them to Synced on a confirmed send or a remote-origin overwrite.
#
# The triggers only fire when the write itself did not touch the status column,
# and never while the tracking flag in `_sync_meta` is raised. Engine writes
# therefore never mark rows dirty.
#
# Imports
import sqlite3
from contextlib import contextmanager
from enum import IntEnum
from typing import Iterator, List, Optional, TYPE_CHECKING
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import (ID_COLUMN, INSERT_TRIGGER_SUFFIX, META_TABLE, SUPPRESS_TRACKING_KEY,
                         SYNC_STATUS_COLUMN, UPDATE_TRIGGER_SUFFIX, quote_identifier, quote_literal)
if TYPE_CHECKING:
    from ..DB.Local_Store import LocalStore
#
########################################################################################################################
#
# Functions:


class SyncStatus(IntEnum):
    SYNCED = 0
    PENDING_UPLOAD = 1
    QUEUED = 2


# Condition shared by every tracking trigger: tracking is not suppressed.
TRACKING_ENABLED_CONDITION = (
    f"NOT EXISTS (SELECT 1 FROM {quote_identifier(META_TABLE)} "
    f"WHERE key = {quote_literal(SUPPRESS_TRACKING_KEY)} AND value = 1)"
)


class SyncStatusTracker:
    def __init__(self, store: "LocalStore"):
        self.store = store

    def ensure_meta_table(self):
        self.store.execute(
            f"CREATE TABLE IF NOT EXISTS {quote_identifier(META_TABLE)} "
            f"(key TEXT PRIMARY KEY NOT NULL, value INTEGER)"
        )

    # --- Triggers ---
    def install_triggers(self, table_name: str, replace: bool = False):
        """Creates the insert and update triggers that mark local edits PendingUpload."""
        self.ensure_meta_table()
        table = quote_identifier(table_name)
        status = quote_identifier(SYNC_STATUS_COLUMN)
        id_col = quote_identifier(ID_COLUMN)
        insert_trigger = quote_identifier(table_name + INSERT_TRIGGER_SUFFIX)
        update_trigger = quote_identifier(table_name + UPDATE_TRIGGER_SUFFIX)

        if replace:
            self.drop_triggers(table_name)

        self.store.execute(
            f"CREATE TRIGGER IF NOT EXISTS {insert_trigger} AFTER INSERT ON {table} "
            f"WHEN NEW.{status} = {int(SyncStatus.SYNCED)} AND {TRACKING_ENABLED_CONDITION} "
            f"BEGIN "
            f"UPDATE {table} SET {status} = {int(SyncStatus.PENDING_UPLOAD)} WHERE {id_col} = NEW.{id_col}; "
            f"END"
        )
        self.store.execute(
            f"CREATE TRIGGER IF NOT EXISTS {update_trigger} AFTER UPDATE ON {table} "
            f"WHEN NEW.{status} = OLD.{status} AND NEW.{status} != {int(SyncStatus.PENDING_UPLOAD)} "
            f"AND {TRACKING_ENABLED_CONDITION} "
            f"BEGIN "
            f"UPDATE {table} SET {status} = {int(SyncStatus.PENDING_UPLOAD)} WHERE {id_col} = NEW.{id_col}; "
            f"END"
        )
        logger.debug(f"Status tracking triggers installed on '{table_name}'")

    def drop_triggers(self, table_name: str):
        for suffix in (INSERT_TRIGGER_SUFFIX, UPDATE_TRIGGER_SUFFIX):
            self.store.execute(f"DROP TRIGGER IF EXISTS {quote_identifier(table_name + suffix)}")

    @contextmanager
    def suppressed_tracking(self, conn: sqlite3.Connection) -> Iterator[None]:
        """
        Raises the suppression flag for the duration of the block.

        Must run inside a transaction on `conn` so the flag is invisible to other connections.
        """
        meta = quote_identifier(META_TABLE)
        conn.execute(f"INSERT OR REPLACE INTO {meta} (key, value) VALUES (?, 1)", (SUPPRESS_TRACKING_KEY,))
        try:
            yield
        finally:
            conn.execute(f"UPDATE {meta} SET value = 0 WHERE key = ?", (SUPPRESS_TRACKING_KEY,))

    # --- Transitions ---
    def promote_pending(self, table_name: str) -> List[str]:
        """Moves every PendingUpload row of a table to Queued. Returns the promoted ids."""
        table = quote_identifier(table_name)
        status = quote_identifier(SYNC_STATUS_COLUMN)
        with self.store.transaction() as conn:
            rows = conn.execute(
                f"SELECT {quote_identifier(ID_COLUMN)} FROM {table} WHERE {status} = ?",
                (int(SyncStatus.PENDING_UPLOAD),),
            ).fetchall()
            conn.execute(
                f"UPDATE {table} SET {status} = ? WHERE {status} = ?",
                (int(SyncStatus.QUEUED), int(SyncStatus.PENDING_UPLOAD)),
            )
        ids = [str(row[0]) for row in rows]
        if ids:
            logger.debug(f"Promoted {len(ids)} row(s) of '{table_name}' to Queued")
        return ids

    def mark_synced(self, table_name: str, row_id: str, only_queued: bool = False) -> bool:
        """
        Resets a row to Synced. With `only_queued`, rows edited again since they were
        queued (back to PendingUpload) keep their status.
        """
        status = quote_identifier(SYNC_STATUS_COLUMN)
        guard = f"{status} = {int(SyncStatus.QUEUED)}" if only_queued else f"{status} != {int(SyncStatus.SYNCED)}"
        cursor = self.store.execute(
            f"UPDATE {quote_identifier(table_name)} SET {status} = ? "
            f"WHERE {quote_identifier(ID_COLUMN)} = ? AND {guard}",
            (int(SyncStatus.SYNCED), row_id),
        )
        return cursor.rowcount > 0

    def mark_pending(self, table_name: str, row_id: str) -> bool:
        status = quote_identifier(SYNC_STATUS_COLUMN)
        cursor = self.store.execute(
            f"UPDATE {quote_identifier(table_name)} SET {status} = ? "
            f"WHERE {quote_identifier(ID_COLUMN)} = ? AND {status} != ?",
            (int(SyncStatus.PENDING_UPLOAD), row_id, int(SyncStatus.PENDING_UPLOAD)),
        )
        return cursor.rowcount > 0

    def status_of(self, table_name: str, row_id: str) -> Optional[SyncStatus]:
        row = self.store.query_one(
            f"SELECT {quote_identifier(SYNC_STATUS_COLUMN)} AS status FROM {quote_identifier(table_name)} "
            f"WHERE {quote_identifier(ID_COLUMN)} = ?",
            (row_id,),
        )
        if row is None or row["status"] is None:
            return None
        return SyncStatus(row["status"])

#
# End of sync_status.py
########################################################################################################################
