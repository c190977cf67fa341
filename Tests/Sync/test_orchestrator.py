# test_orchestrator.py
#
# End-to-end sync cycles between devices sharing one in-memory remote database.
#
# Imports
import pytest
#
# Local Imports
from tablesync.config import SyncSettings
from tablesync.DB.Local_Store import LocalStore
from tablesync.Sync.events import (AccountChange, AccountChangeType, DidSendChanges, SentRecordZoneChanges,
                                   StateUpdate)
from tablesync.Sync.exceptions import ConfigurationError
from tablesync.Sync.models import FailedRecordSave, PendingChange, RecordID, RemoteRecord
from tablesync.Sync.orchestrator import SyncOrchestrator
from tablesync.Sync.sync_status import SyncStatus
from tablesync.Transport.base import AccountStatus
from tablesync.Transport.memory_transport import InMemoryTransport

from conftest import create_person_table, make_device
#
#######################################################################################################################
#
# Functions:


def names(db):
    return {row["id"]: row["name"] for row in db.query("SELECT id, name FROM Person ORDER BY id")}


def status(db, row_id):
    return db.query_one("SELECT _sync_status FROM Person WHERE id = ?", (row_id,))["_sync_status"]


# --- Configuration ---

class TestConfiguration:
    @pytest.mark.parametrize("service_identifier", ["", "   ", "has spaces", ".leading-dot"])
    def test_invalid_service_identifier_aborts(self, tmp_path, remote_db, service_identifier):
        db = LocalStore(tmp_path / "bad.db", transport=InMemoryTransport(remote_db),
                        settings=SyncSettings(service_identifier=service_identifier))
        try:
            with pytest.raises(ConfigurationError):
                db.start_sync()
            with pytest.raises(ConfigurationError):
                db.sync()
        finally:
            db.close_connection()

    def test_store_without_transport_cannot_sync(self, store):
        with pytest.raises(ConfigurationError):
            store.sync()
        with pytest.raises(ConfigurationError):
            store.start_sync()

    def test_start_sync_is_idempotent(self, device_a, mocker):
        save_zones = mocker.spy(device_a.sync_engine.transport, "save_zones")
        create_person_table(device_a)

        device_a.start_sync()
        device_a.start_sync()

        assert device_a.sync_engine.started
        assert save_zones.call_count == 1


# --- Start-up ---

class TestStartSync:
    def test_installs_tracking_on_existing_tables(self, device_a, remote_db):
        create_person_table(device_a)
        device_a.start_sync()

        device_a.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")
        assert status(device_a, "1") == SyncStatus.PENDING_UPLOAD
        assert "Person" in remote_db.zones()

    def test_unavailable_account_is_not_fatal(self, device_a, remote_db):
        remote_db.account_status = AccountStatus.NO_ACCOUNT
        device_a.start_sync()
        assert device_a.sync_engine.started

    def test_restores_persisted_cursor(self, tmp_path, remote_db, sync_settings):
        first = make_device(tmp_path, remote_db, sync_settings, "restart")
        first.sync_engine.transport.state.add([PendingChange.upsert("Person", "9")])
        first.sync_engine.persistence.save(first.sync_engine.transport.state.serialization)
        first.close_connection()

        second = make_device(tmp_path, remote_db, sync_settings, "restart")
        try:
            second.start_sync()
            assert PendingChange.upsert("Person", "9") in second.sync_engine.transport.state.pending_changes
        finally:
            second.close_connection()


# --- Sync cycles ---

class TestSyncCycle:
    def test_local_insert_is_uploaded(self, device_a, remote_db):
        create_person_table(device_a)
        device_a.start_sync()
        device_a.execute("INSERT INTO Person (id, name, age) VALUES ('1', 'Ada', 36)")

        report = device_a.sync()

        assert report.ok
        assert report.rows_queued == 1
        assert report.records_saved == 1
        stored = remote_db.get_record(RecordID("Person", "1"))
        assert stored["name"] == "Ada"
        assert stored["age"] == 36
        assert status(device_a, "1") == SyncStatus.SYNCED
        assert device_a.sync_engine.transport.state.pending_changes == []

    def test_legacy_rows_are_uploaded_on_first_sync(self, device_a, remote_db):
        create_person_table(device_a, with_status=False)
        device_a.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")
        device_a.execute("INSERT INTO Person (id, name) VALUES ('2', 'Bob')")

        report = device_a.sync()

        assert report.records_saved == 2
        assert remote_db.get_record(RecordID("Person", "2"))["name"] == "Bob"

    def test_sync_writes_state_file(self, device_a):
        create_person_table(device_a, with_status=False)
        device_a.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")
        device_a.sync()

        state_path = device_a.sync_engine.persistence.path
        assert state_path.exists()
        assert device_a.sync_engine.persistence.load() == device_a.sync_engine.transport.state.serialization

    def test_two_devices_converge(self, device_a, device_b):
        create_person_table(device_a, with_status=False)
        device_a.execute("INSERT INTO Person (id, name, age) VALUES ('1', 'Ada', 36)")
        device_a.sync()

        device_b.sync()
        assert names(device_b) == {"1": "Ada"}
        assert status(device_b, "1") == SyncStatus.SYNCED

        device_b.execute("UPDATE Person SET name = 'Ada Lovelace' WHERE id = '1'")
        device_b.execute("INSERT INTO Person (id, name, age) VALUES ('2', 'Charles', 42)")
        device_b.sync()
        device_a.sync()

        assert names(device_a) == {"1": "Ada Lovelace", "2": "Charles"}
        assert names(device_b) == names(device_a)
        assert status(device_a, "2") == SyncStatus.SYNCED

    def test_blob_sync_leaves_no_temporary_files(self, device_a, device_b, staging_dir):
        create_person_table(device_a, with_status=False)
        device_a.execute("ALTER TABLE Person ADD COLUMN avatar BLOB")
        device_a.execute("INSERT INTO Person (id, name, avatar) VALUES ('1', 'Ada', ?)", (b"img",))
        device_a.sync()

        device_b.sync()
        device_b.sync()
        device_b.execute("UPDATE Person SET name = 'Ada Lovelace' WHERE id = '1'")
        device_b.sync()
        device_a.sync()

        assert names(device_a) == {"1": "Ada Lovelace"}
        assert device_b.query_one("SELECT avatar FROM Person WHERE id = '1'")["avatar"] == b"img"
        assert list(staging_dir.iterdir()) == []

    def test_device_does_not_ingest_its_own_changes(self, device_a):
        create_person_table(device_a, with_status=False)
        device_a.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")

        report = device_a.sync()

        assert report.changes_fetched == 0

    def test_local_delete_reaches_other_device(self, device_a, device_b):
        create_person_table(device_a, with_status=False)
        device_a.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")
        device_a.execute("INSERT INTO Person (id, name) VALUES ('2', 'Bob')")
        device_a.sync()
        device_b.sync()

        device_a.execute("DELETE FROM Person WHERE id = '2'")
        report = device_a.sync()
        assert report.tombstones_drained == 1
        assert report.records_deleted == 1
        assert device_a.sync_engine.deletion_tracker.count() == 0

        device_b.sync()
        assert names(device_b) == {"1": "Ada"}
        assert device_b.sync_engine.deletion_tracker.count() == 0

    def test_remote_zone_deletion_drops_local_table(self, device_a, device_b, remote_db):
        create_person_table(device_a, with_status=False)
        device_a.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")
        device_a.sync()
        device_b.sync()
        assert device_b.sync_engine.schema.table_exists("Person")

        remote_db.delete_zone("Person")
        device_b.sync()

        assert not device_b.sync_engine.schema.table_exists("Person")

    def test_rejected_save_is_retried(self, device_a, remote_db):
        create_person_table(device_a, with_status=False)
        device_a.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")
        remote_db.rejected_records.add(RecordID("Person", "1"))

        report = device_a.sync()

        assert report.records_failed == 1
        assert status(device_a, "1") == SyncStatus.PENDING_UPLOAD
        assert remote_db.get_record(RecordID("Person", "1")) is None

        remote_db.rejected_records.clear()
        report = device_a.sync()
        assert report.records_saved == 1
        assert status(device_a, "1") == SyncStatus.SYNCED

    def test_unreachable_remote_does_not_raise(self, device_a, remote_db):
        create_person_table(device_a, with_status=False)
        device_a.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")
        remote_db.reachable = False

        report = device_a.sync()

        assert not report.ok
        assert not report.send_succeeded
        assert not report.fetch_succeeded
        assert PendingChange.upsert("Person", "1") in device_a.sync_engine.transport.state.pending_changes

        remote_db.reachable = True
        report = device_a.sync()
        assert report.ok
        assert remote_db.get_record(RecordID("Person", "1"))["name"] == "Ada"

    def test_edit_during_upload_is_not_lost(self, device_a, remote_db, mocker):
        create_person_table(device_a, with_status=False)
        device_a.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")
        transport = device_a.sync_engine.transport
        original_push = transport._push

        def push_then_edit(saves, deletes):
            result = original_push(saves, deletes)
            device_a.execute("UPDATE Person SET name = 'Edited mid-flight' WHERE id = '1'")
            return result

        mocker.patch.object(transport, "_push", side_effect=push_then_edit)
        device_a.sync()

        assert status(device_a, "1") == SyncStatus.PENDING_UPLOAD


# --- Event handling ---

class TestEventHandling:
    def test_state_update_is_persisted(self, engine):
        engine.handle_event(StateUpdate(cursor=b'{"token": "3", "pending": []}'))
        assert engine.persistence.load() == b'{"token": "3", "pending": []}'

    def test_failed_save_marks_row_pending(self, device_a, engine):
        create_person_table(device_a)
        device_a.execute("INSERT INTO Person (id, name, _sync_status) VALUES ('1', 'Ada', 2)")
        record = RemoteRecord("Person", RecordID("Person", "1"), {"name": "Ada"})

        engine.handle_event(SentRecordZoneChanges(failed_record_saves=[FailedRecordSave(record, "quota")]))

        assert status(device_a, "1") == SyncStatus.PENDING_UPLOAD

    def test_saved_record_marks_queued_row_synced(self, device_a, engine):
        create_person_table(device_a)
        device_a.execute("INSERT INTO Person (id, name, _sync_status) VALUES ('1', 'Ada', 2)")
        record = RemoteRecord("Person", RecordID("Person", "1"), {"name": "Ada"})

        engine.handle_event(SentRecordZoneChanges(saved_records=[record]))

        assert status(device_a, "1") == SyncStatus.SYNCED

    def test_events_for_missing_tables_are_ignored(self, engine):
        record = RemoteRecord("Gone", RecordID("Gone", "1"))
        engine.handle_event(SentRecordZoneChanges(saved_records=[record],
                                                  failed_record_saves=[FailedRecordSave(record, "x")]))

    def test_lifecycle_and_account_events_are_accepted(self, engine):
        engine.handle_event(DidSendChanges())
        engine.handle_event(AccountChange(AccountChangeType.SIGN_OUT))

    def test_handler_failure_does_not_propagate(self, engine, mocker):
        mocker.patch.object(engine.persistence, "save", side_effect=RuntimeError("disk gone"))
        engine.handle_event(StateUpdate(cursor=b"x"))


def test_orchestrator_registers_itself_as_delegate(store, remote_db, sync_settings):
    transport = InMemoryTransport(remote_db)
    orchestrator = SyncOrchestrator(store, transport, settings=sync_settings)
    assert transport.delegate is orchestrator

#
# End of test_orchestrator.py
########################################################################################################################
