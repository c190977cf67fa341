# schema_evolution.py
# Description: Creates and extends local tables from the shapes of remote records.
#
# The local schema for a table only ever grows: columns are added with a type
# inferred from the first value seen, and existing columns are never retyped or
# dropped. Every operation checks the live schema first, so calling it twice is
# a no-op the second time.
#
# Imports
from typing import List, Optional, TYPE_CHECKING
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import BOOKKEEPING_COLUMNS, ID_COLUMN, SYNC_STATUS_COLUMN, is_reserved_table, quote_identifier
from .deletion_tracker import DeletionTracker
from .exceptions import SchemaError
from .models import RemoteRecord
from .sync_status import SyncStatus, SyncStatusTracker
from .value_codec import infer_column_type
if TYPE_CHECKING:
    from ..DB.Local_Store import LocalStore
#
########################################################################################################################
#
# Functions:


class SchemaEvolutionManager:
    def __init__(self, store: "LocalStore", status_tracker: SyncStatusTracker, deletion_tracker: DeletionTracker):
        self.store = store
        self.status_tracker = status_tracker
        self.deletion_tracker = deletion_tracker

    # --- Introspection ---
    def table_exists(self, table_name: str) -> bool:
        row = self.store.query_one("SELECT 1 AS present FROM sqlite_master WHERE type = 'table' AND name = ?",
                                   (table_name,))
        return row is not None

    def column_names(self, table_name: str) -> List[str]:
        return [col["name"] for col in self.store.table_info(table_name)]

    def has_column(self, table_name: str, column_name: str) -> bool:
        # SQLite column names are case-insensitive.
        wanted = column_name.lower()
        return any(name.lower() == wanted for name in self.column_names(table_name))

    def synced_tables(self) -> List[str]:
        """Every user table. SQLite internals and the engine's own tables are excluded."""
        return [name for name in self.store.list_tables() if not is_reserved_table(name)]

    # --- Evolution ---
    def ensure_table(self, table_name: str, sample_record: Optional[RemoteRecord] = None) -> List[str]:
        """
        Makes sure `table_name` exists and has a column for every field of `sample_record`.

        A new table gets the `id` primary key, the status column (default Synced),
        one column per field and the tracking triggers. For an existing table only
        the missing columns are appended, nullable, with an inferred type.

        Returns:
            The names of the columns that were added (every field column for a new table).

        Raises:
            SchemaError: For empty or reserved table names.
        """
        if not table_name or is_reserved_table(table_name):
            raise SchemaError(f"Refusing to manage reserved or empty table name {table_name!r}", table=table_name)

        fields = []
        if sample_record is not None:
            fields = [key for key in sample_record.all_keys() if key not in BOOKKEEPING_COLUMNS]

        if not self.table_exists(table_name):
            column_defs = [
                f"{quote_identifier(ID_COLUMN)} TEXT PRIMARY KEY NOT NULL",
                f"{quote_identifier(SYNC_STATUS_COLUMN)} INTEGER NOT NULL DEFAULT {int(SyncStatus.SYNCED)}",
            ]
            seen = {ID_COLUMN, SYNC_STATUS_COLUMN}
            added = []
            for key in fields:
                if key.lower() in seen:
                    continue
                seen.add(key.lower())
                column_defs.append(f"{quote_identifier(key)} {infer_column_type(sample_record[key]).value}")
                added.append(key)
            self.store.execute(f"CREATE TABLE IF NOT EXISTS {quote_identifier(table_name)} ({', '.join(column_defs)})")
            logger.info(f"Created table '{table_name}' with columns {added}")
            self.install_tracking(table_name)
            return added

        existing = {name.lower() for name in self.column_names(table_name)}
        added = []
        for key in fields:
            if key.lower() in existing:
                continue
            column_type = infer_column_type(sample_record[key])
            self.store.execute(f"ALTER TABLE {quote_identifier(table_name)} "
                               f"ADD COLUMN {quote_identifier(key)} {column_type.value}")
            existing.add(key.lower())
            added.append(key)
            logger.info(f"Added column '{key}' ({column_type.value}) to '{table_name}'")
        return added

    def ensure_status_column(self, table_name: str, default_status: SyncStatus = SyncStatus.SYNCED) -> bool:
        """
        Adds the status column to a table that predates sync. Existing rows take `default_status`.

        Returns True if the column was added. Tracking triggers are installed along with it.
        """
        if self.has_column(table_name, SYNC_STATUS_COLUMN):
            return False
        self.store.execute(
            f"ALTER TABLE {quote_identifier(table_name)} ADD COLUMN {quote_identifier(SYNC_STATUS_COLUMN)} "
            f"INTEGER NOT NULL DEFAULT {int(default_status)}"
        )
        logger.info(f"Added sync status column to '{table_name}' (existing rows: {default_status.name})")
        self.install_tracking(table_name)
        return True

    def install_tracking(self, table_name: str, replace: bool = False) -> bool:
        """
        Installs the status and delete triggers on a table. Tables without an `id`
        column cannot be tracked and are skipped.
        """
        if not self.has_column(table_name, ID_COLUMN):
            logger.warning(f"Table '{table_name}' has no '{ID_COLUMN}' column; local changes will not be tracked.")
            return False
        if not self.has_column(table_name, SYNC_STATUS_COLUMN):
            return False
        self.status_tracker.ensure_meta_table()
        self.deletion_tracker.ensure_tombstone_table()
        self.status_tracker.install_triggers(table_name, replace=replace)
        self.deletion_tracker.install_trigger(table_name, replace=replace)
        return True

#
# End of schema_evolution.py
########################################################################################################################
