# conftest.py
# Description: Shared fixtures for the tablesync test suite.
#
# Imports
from pathlib import Path
#
# Third-Party Imports
import pytest
from loguru import logger
#
# Local Imports
from tablesync.config import SyncSettings
from tablesync.DB.Local_Store import LocalStore
from tablesync.Sync.models import RecordID, RemoteRecord
from tablesync.Transport.memory_transport import InMemoryRemoteDatabase, InMemoryTransport
#
########################################################################################################################
#
# Fixtures:

SERVICE_ID = "com.example.tests"


@pytest.fixture
def caplog_loguru(caplog):
    """Routes loguru output into pytest's caplog."""
    handler_id = logger.add(caplog.handler, format="{message}", level=0)
    yield caplog
    logger.remove(handler_id)


@pytest.fixture
def staging_dir(tmp_path) -> Path:
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def sync_settings(staging_dir) -> SyncSettings:
    return SyncSettings(service_identifier=SERVICE_ID, asset_staging_dir=staging_dir)


@pytest.fixture
def remote_db(staging_dir) -> InMemoryRemoteDatabase:
    """One shared in-memory remote database per test."""
    return InMemoryRemoteDatabase(staging_dir=staging_dir)


@pytest.fixture
def store(tmp_path):
    """A file-backed store without a transport."""
    db = LocalStore(tmp_path / "plain.db", client_id="test_client")
    yield db
    db.close_connection()


def make_device(tmp_path: Path, remote_db: InMemoryRemoteDatabase, settings: SyncSettings, name: str) -> LocalStore:
    """A file-backed store synced through its own InMemoryTransport."""
    transport = InMemoryTransport(remote_db, device_id=name)
    return LocalStore(tmp_path / f"{name}.db", client_id=name, transport=transport, settings=settings)


@pytest.fixture
def device_a(tmp_path, remote_db, sync_settings):
    db = make_device(tmp_path, remote_db, sync_settings, "device_a")
    yield db
    db.close_connection()


@pytest.fixture
def device_b(tmp_path, remote_db, sync_settings):
    db = make_device(tmp_path, remote_db, sync_settings, "device_b")
    yield db
    db.close_connection()


@pytest.fixture
def engine(device_a):
    """The orchestrator of device_a."""
    return device_a.sync_engine


def create_person_table(db: LocalStore, with_status: bool = True):
    status_column = ", _sync_status INTEGER NOT NULL DEFAULT 0" if with_status else ""
    db.execute(f"CREATE TABLE Person (id TEXT PRIMARY KEY NOT NULL, name TEXT, age INTEGER{status_column})")


def person_record(row_id: str, changed_keys=None, **fields) -> RemoteRecord:
    return RemoteRecord("Person", RecordID("Person", row_id), fields, changed_keys)

#
# End of conftest.py
########################################################################################################################
