# Local_Store.py
# Description: SQLite-backed local store that the sync engine reads and writes.
#
"""
Local_Store.py
--------------

A thin SQLite wrapper providing the primitives the sync engine relies on:

- Thread-safe database connections using `threading.local`.
- `execute` / `execute_many` / `query` helpers that map SQLite errors onto the
  store's own exception hierarchy.
- A transaction context manager that only manages the outermost
  BEGIN/COMMIT/ROLLBACK, plus named savepoints for nested recovery.
- Schema introspection (`list_tables`, `table_info`).

Connections are opened in autocommit mode (`isolation_level=None`); every
multi-statement unit of work goes through `transaction()` or `savepoint()`.

When constructed with a remote transport, the store owns exactly one
`SyncOrchestrator` and exposes `start_sync()` and `sync()`.
"""
# Imports
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union, TYPE_CHECKING
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from ..Constants import DEFAULT_CLIENT_ID, SQLITE_INTERNAL_PREFIX, quote_identifier
from ..Sync.exceptions import ConfigurationError
from ..Sync.orchestrator import SyncOrchestrator, SyncReport
if TYPE_CHECKING:
    from ..config import SyncSettings
    from ..Transport.base import RemoteTransport
#
########################################################################################################################
#
# Functions:


# --- Custom Exceptions ---
class LocalStoreError(Exception):
    """Base exception for LocalStore related errors."""
    pass


class StoreSchemaError(LocalStoreError):
    """Exception for missing tables/columns or malformed schema statements."""
    pass


class ConflictError(LocalStoreError):
    """
    Indicates a unique constraint violation.

    `table` and `columns` come from SQLite's "UNIQUE constraint failed: t.a, t.b"
    message; they are None and empty when the message names an index instead.
    """

    def __init__(self, message: str, table: Optional[str] = None, columns: Optional[List[str]] = None):
        super().__init__(message)
        self.table = table
        self.columns = columns or []

    @classmethod
    def from_integrity_error(cls, error: sqlite3.IntegrityError, context: str) -> "ConflictError":
        _, _, detail = str(error).partition(":")
        qualified = [item.strip().split(".", 1) for item in detail.split(",") if "." in item]
        table = qualified[0][0] if qualified else None
        return cls(f"{context}: {error}", table=table, columns=[column for _, column in qualified])


# --- Store Class ---
class LocalStore:
    def __init__(self, db_path: Union[str, Path], client_id: str = DEFAULT_CLIENT_ID,
                 transport: Optional["RemoteTransport"] = None,
                 settings: Optional["SyncSettings"] = None):
        """
        Initializes the LocalStore instance.

        Args:
            db_path: Path to the SQLite database file or ":memory:" for an in-memory database.
                     An in-memory store is one shared-cache database that every thread's connection
                     sees, so transport callbacks on other threads work on the same data. It lives
                     until the last of those connections closes, and it has no sync state file.
            client_id: Identifier of this client instance, used in log messages.
            transport: Optional remote transport. When given, the store builds its sync orchestrator.
            settings: Sync settings for the orchestrator. Loaded from the config file when omitted.

        Raises:
            ValueError: If `client_id` is empty or None.
            LocalStoreError: If the database directory cannot be created or the first connection fails.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'
        # Named so connections from other threads attach to the same in-memory database.
        self._memory_uri = f"file:tablesync-{uuid.uuid4().hex}?mode=memory&cache=shared"

        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.client_id = client_id

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise LocalStoreError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing LocalStore for path: {self.db_path_str} [Client ID: {self.client_id}]")
        self._local = threading.local()
        self.get_connection()

        self.sync_engine: Optional[SyncOrchestrator] = None
        if transport is not None:
            self.sync_engine = SyncOrchestrator(self, transport, settings=settings)

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        """
        Retrieves or creates a thread-local SQLite connection.

        If an existing connection is closed or unusable, it's reopened. Enables WAL
        mode for file-based databases.

        Raises:
            LocalStoreError: If connecting to the database fails.
        """
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection for {self.db_path_str} was closed or became unusable. Reopening.")
                try:
                    conn.close()
                except sqlite3.Error:
                    pass
                conn = None

        if not conn:
            try:
                conn = sqlite3.connect(
                    self._memory_uri if self.is_memory_db else self.db_path_str,
                    check_same_thread=False,
                    timeout=15,
                    isolation_level=None,
                    uri=self.is_memory_db,
                )
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                self._local.conn = conn
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}")
                self._local.conn = None
                raise LocalStoreError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        """Returns the active sqlite3.Connection for the current thread."""
        return self._get_thread_connection()

    def close_connection(self):
        """
        Closes the current thread's database connection.

        An open transaction is rolled back first. File-based databases in WAL mode
        are checkpointed before closing.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        try:
            if conn.in_transaction:
                logger.warning(f"Connection to {self.db_path_str} is in an uncommitted transaction during close. "
                               f"Rolling back.")
                conn.rollback()
            if not self.is_memory_db:
                mode_row = conn.execute("PRAGMA journal_mode;").fetchone()
                if mode_row and mode_row[0].lower() == 'wal':
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
            conn.close()
            logger.debug(f"Closed connection for thread {threading.get_ident()} to {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.warning(f"Error during SQLite connection close/checkpoint for {self.db_path_str}: {e}")
        finally:
            self._local.conn = None

    # --- Query Execution ---
    def execute(self, sql: str, params: Optional[Union[tuple, list, Dict[str, Any]]] = None, *,
                script: bool = False) -> sqlite3.Cursor:
        """
        Executes a single SQL statement or, with `script=True`, an SQL script.

        Raises:
            ConflictError: On a unique constraint violation.
            StoreSchemaError: When a referenced table or column does not exist.
            LocalStoreError: For any other SQLite error.
        """
        conn = self.get_connection()
        try:
            logger.trace(f"Executing SQL (script={script}): {sql[:300]} Params: {str(params)[:200]}")
            if script:
                return conn.executescript(sql)
            return conn.execute(sql, params or ())
        except sqlite3.IntegrityError as e:
            if "unique constraint failed" in str(e).lower():
                logger.warning(f"Unique constraint violation: {sql[:300]} Error: {e}")
                raise ConflictError.from_integrity_error(e, "Unique constraint violation") from e
            logger.warning(f"Integrity constraint violation: {sql[:300]} Error: {e}")
            raise LocalStoreError(f"Database constraint violation: {e}") from e
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "no such table" in message or "no such column" in message or "has no column" in message:
                raise StoreSchemaError(f"Schema error: {e}") from e
            logger.error(f"Query execution failed: {sql[:300]} Error: {e}")
            raise LocalStoreError(f"Query execution failed: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {sql[:300]} Error: {e}")
            raise LocalStoreError(f"Query execution failed: {e}") from e

    def execute_many(self, sql: str, params_list: List[tuple]) -> Optional[sqlite3.Cursor]:
        """Executes a parameterized statement once per parameter tuple. Returns None for an empty list."""
        if not params_list:
            logger.debug("execute_many called with empty params_list.")
            return None
        conn = self.get_connection()
        try:
            return conn.executemany(sql, params_list)
        except sqlite3.IntegrityError as e:
            if "unique constraint failed" in str(e).lower():
                raise ConflictError.from_integrity_error(e, "Unique constraint violation during batch") from e
            raise LocalStoreError(f"Database constraint violation during batch: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Execute Many failed: {sql[:150]} Error: {e}")
            raise LocalStoreError(f"Execute Many failed: {e}") from e

    def query(self, sql: str, params: Optional[Union[tuple, list, Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """Runs a SELECT and returns every row as a plain dict."""
        cursor = self.execute(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    def query_one(self, sql: str, params: Optional[Union[tuple, list, Dict[str, Any]]] = None) -> Optional[Dict[str, Any]]:
        row = self.execute(sql, params).fetchone()
        return dict(row) if row is not None else None

    # --- Transaction Context ---
    def transaction(self) -> 'TransactionContextManager':
        """
        Returns a context manager for database transactions.

        Usage:
            with store.transaction() as conn:
                conn.execute(...)
        Commit happens on successful exit of the outermost block, rollback on exception.
        """
        return TransactionContextManager(self)

    @contextmanager
    def savepoint(self, name: str) -> Iterator[sqlite3.Connection]:
        """
        Runs the block inside `SAVEPOINT name`. On exception the work since the
        savepoint is rolled back and the exception propagates.
        """
        conn = self.get_connection()
        quoted = quote_identifier(name)
        conn.execute(f"SAVEPOINT {quoted}")
        try:
            yield conn
        except BaseException:
            try:
                conn.execute(f"ROLLBACK TO SAVEPOINT {quoted}")
                conn.execute(f"RELEASE SAVEPOINT {quoted}")
            except sqlite3.Error as rb_err:
                logger.error(f"Rolling back savepoint {name} failed: {rb_err}")
            raise
        else:
            conn.execute(f"RELEASE SAVEPOINT {quoted}")

    # --- Schema Introspection ---
    def list_tables(self) -> List[str]:
        """Names of every table in the database except SQLite's internal ones."""
        rows = self.query("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
        return [row["name"] for row in rows if not row["name"].startswith(SQLITE_INTERNAL_PREFIX)]

    def table_info(self, table_name: str) -> List[Dict[str, Any]]:
        """`PRAGMA table_info` rows for a table; empty when the table does not exist."""
        return self.query(f"PRAGMA table_info({quote_identifier(table_name)})")

    # --- Sync ---
    def _require_sync_engine(self) -> SyncOrchestrator:
        if self.sync_engine is None:
            raise ConfigurationError("This store was created without a remote transport; sync is not available.")
        return self.sync_engine

    def start_sync(self):
        """One-time sync setup. Safe to call more than once."""
        self._require_sync_engine().start_sync()

    def sync(self) -> SyncReport:
        """Runs one full sync cycle."""
        return self._require_sync_engine().sync()


class TransactionContextManager:
    def __init__(self, store: LocalStore):
        self.store = store
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.store.get_connection()
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")
            self.is_outermost_transaction = True
            logger.trace(f"Transaction started (outermost) on thread {threading.get_ident()}.")
        else:
            # Only the outermost block issues BEGIN/COMMIT/ROLLBACK.
            logger.trace(f"Entering nested transaction block on thread {threading.get_ident()}.")
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.conn:
            logger.error("Transaction context: Connection is None in __exit__.")
            return False

        if self.is_outermost_transaction:
            if exc_type:
                logger.error(f"Transaction failed, rolling back on thread {threading.get_ident()}: "
                             f"{exc_type.__name__} - {exc_val}")
                try:
                    self.conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.critical(f"Rollback FAILED on thread {threading.get_ident()}: {rb_err}")
            else:
                try:
                    self.conn.commit()
                    logger.trace(f"Transaction committed on thread {threading.get_ident()}.")
                except sqlite3.Error as commit_err:
                    logger.error(f"Commit FAILED on thread {threading.get_ident()}, attempting rollback: {commit_err}")
                    try:
                        self.conn.rollback()
                    except sqlite3.Error as rb_err:
                        logger.critical(f"Rollback after failed commit also FAILED: {rb_err}")
                    raise LocalStoreError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of Local_Store.py
########################################################################################################################
