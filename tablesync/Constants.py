# Constants.py
# Description: Reserved names and fixed values shared by the sync engine.
#
########################################################################################################################
#
# Constants:

# --- Bookkeeping columns ---
ID_COLUMN = "id"
SYNC_STATUS_COLUMN = "_sync_status"
BOOKKEEPING_COLUMNS = frozenset({ID_COLUMN, SYNC_STATUS_COLUMN})

# --- Reserved tables ---
# Every table whose name starts with one of these prefixes belongs to SQLite or to the engine and is never synced.
RESERVED_TABLE_PREFIX = "_sync_"
SQLITE_INTERNAL_PREFIX = "sqlite_"
TOMBSTONE_TABLE = "_sync_tombstones"
META_TABLE = "_sync_meta"

# Row key in META_TABLE; value 1 disables the tracking triggers.
SUPPRESS_TRACKING_KEY = "suppress_tracking"

# --- Trigger name suffixes ---
INSERT_TRIGGER_SUFFIX = "_sync_insert"
UPDATE_TRIGGER_SUFFIX = "_sync_update"
DELETE_TRIGGER_SUFFIX = "_sync_delete"

# --- State persistence ---
STATE_FILE_SUFFIX = ".syncstate"
STATE_FILE_FORMAT_VERSION = 1

# --- Value codec ---
# Prefix of temporary files holding outgoing blobs; transports delete them after a push.
STAGED_ASSET_PREFIX = "tablesync-asset-"
# Prefix of temporary files holding downloaded blobs.
DOWNLOADED_ASSET_PREFIX = "tablesync-download-"

# --- Client identity ---
DEFAULT_CLIENT_ID = "tablesync_local_instance_v1"


def is_reserved_table(table_name: str) -> bool:
    """True for SQLite's own tables and the engine's bookkeeping tables."""
    return table_name.startswith(RESERVED_TABLE_PREFIX) or table_name.startswith(SQLITE_INTERNAL_PREFIX)


def quote_identifier(name: str) -> str:
    """Quotes a table or column name for direct use in SQL."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quotes a string literal for SQL that cannot take bound parameters (trigger bodies)."""
    return "'" + value.replace("'", "''") + "'"

#
# End of Constants.py
########################################################################################################################
