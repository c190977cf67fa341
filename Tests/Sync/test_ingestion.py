# test_ingestion.py
#
#
# Imports
from datetime import datetime, timezone
#
# Third-Party Imports
import pytest
#
# Local Imports
from tablesync.Constants import DOWNLOADED_ASSET_PREFIX
from tablesync.Metrics.metrics_logger import SyncMetrics
from tablesync.Sync.deletion_tracker import DeletionTracker
from tablesync.Sync.ingestion import IngestionPipeline
from tablesync.Sync.models import RecordDeletion, RecordID, RemoteRecord
from tablesync.Sync.schema_evolution import SchemaEvolutionManager
from tablesync.Sync.sync_status import SyncStatus, SyncStatusTracker
from tablesync.Sync.value_codec import ValueCodec, stage_bytes

from conftest import create_person_table, person_record
#
#######################################################################################################################
#
# Functions:


@pytest.fixture
def trackers(store):
    status_tracker = SyncStatusTracker(store)
    deletion_tracker = DeletionTracker(store)
    status_tracker.ensure_meta_table()
    deletion_tracker.ensure_tombstone_table()
    return status_tracker, deletion_tracker


@pytest.fixture
def schema(store, trackers):
    return SchemaEvolutionManager(store, *trackers)


@pytest.fixture
def pipeline(store, schema, trackers, staging_dir):
    return IngestionPipeline(store, schema, trackers[0], ValueCodec(staging_dir), SyncMetrics({"test": True}))


def fetch_person(store, row_id):
    return store.query_one("SELECT * FROM Person WHERE id = ?", (row_id,))


def test_person_scenario_creates_table_and_row(store, pipeline):
    report = pipeline.ingest([person_record("1", name="Ada", age=36)], [])

    assert report.inserted == 1
    assert report.failed == 0
    row = fetch_person(store, "1")
    assert row["name"] == "Ada"
    assert row["age"] == 36
    assert row["_sync_status"] == SyncStatus.SYNCED


def test_remote_writes_do_not_look_like_local_edits(store, pipeline, trackers):
    _, deletion_tracker = trackers
    pipeline.ingest([person_record("1", name="Ada"), person_record("2", name="Bob")], [])
    pipeline.ingest([person_record("1", name="Ada L.")], [RecordDeletion(RecordID("Person", "2"), "Person")])

    assert fetch_person(store, "1")["_sync_status"] == SyncStatus.SYNCED
    assert fetch_person(store, "2") is None
    assert deletion_tracker.count() == 0

    # Local edits are still tracked afterwards.
    store.execute("UPDATE Person SET name = 'Local' WHERE id = '1'")
    assert fetch_person(store, "1")["_sync_status"] == SyncStatus.PENDING_UPLOAD


def test_remote_wins_only_for_changed_keys(store, pipeline):
    pipeline.ingest([person_record("1", name="Ada", age=36)], [])
    store.execute("UPDATE Person SET age = 37 WHERE id = '1'")

    report = pipeline.ingest([person_record("1", changed_keys=["name"], name="Ada L.", age=36)], [])

    assert report.updated == 1
    row = fetch_person(store, "1")
    assert row["name"] == "Ada L."
    assert row["age"] == 37
    assert row["_sync_status"] == SyncStatus.SYNCED


def test_without_changed_keys_every_field_is_considered(store, pipeline):
    pipeline.ingest([person_record("1", name="Ada", age=36)], [])
    store.execute("UPDATE Person SET age = 37, name = 'Local' WHERE id = '1'")

    pipeline.ingest([person_record("1", name="Remote", age=40)], [])

    row = fetch_person(store, "1")
    assert (row["name"], row["age"]) == ("Remote", 40)


def test_changed_key_missing_from_fields_clears_the_column(store, pipeline):
    pipeline.ingest([person_record("1", name="Ada", age=36)], [])
    pipeline.ingest([person_record("1", changed_keys=["age"], name="Ada")], [])
    assert fetch_person(store, "1")["age"] is None


def test_identical_record_is_unchanged(store, pipeline):
    pipeline.ingest([person_record("1", name="Ada", age=36)], [])
    report = pipeline.ingest([person_record("1", name="Ada", age=36)], [])

    assert report.unchanged == 1
    assert report.updated == 0


def test_new_fields_grow_the_table(store, pipeline):
    pipeline.ingest([person_record("1", name="Ada")], [])
    pipeline.ingest([person_record("2", name="Bob", email="bob@example.com")], [])

    assert fetch_person(store, "2")["email"] == "bob@example.com"
    assert fetch_person(store, "1")["email"] is None


def test_dates_and_blobs_are_stored_as_local_values(store, pipeline):
    born = datetime(1815, 12, 10, tzinfo=timezone.utc)
    pipeline.ingest([person_record("1", born=born, avatar=b"\x89PNG")], [])

    row = fetch_person(store, "1")
    assert row["born"] == "1815-12-10T00:00:00Z"
    assert row["avatar"] == b"\x89PNG"


def test_downloaded_assets_are_removed_after_ingestion(store, pipeline, staging_dir):
    avatar = stage_bytes(b"img", staging_dir, prefix=DOWNLOADED_ASSET_PREFIX)
    pipeline.ingest([person_record("1", avatar=avatar)], [])

    assert fetch_person(store, "1")["avatar"] == b"img"
    assert list(staging_dir.iterdir()) == []


def test_unsupported_field_types_are_skipped(store, pipeline):
    report = pipeline.ingest([person_record("1", name="Ada", tags=["a", "b"])], [])

    assert report.inserted == 1
    row = fetch_person(store, "1")
    assert row["name"] == "Ada"


def test_bulk_insert_rejection_falls_back_to_per_field_writes(store, pipeline):
    store.execute("CREATE TABLE Person (id TEXT PRIMARY KEY NOT NULL, name TEXT, "
                  "age INTEGER CHECK (age >= 0), _sync_status INTEGER NOT NULL DEFAULT 0)")

    report = pipeline.ingest([person_record("1", name="Ada", age=-1)], [])

    assert report.inserted == 1
    assert report.field_failures == 1
    row = fetch_person(store, "1")
    assert row["name"] == "Ada"
    assert row["age"] is None
    assert row["_sync_status"] == SyncStatus.SYNCED


def test_strict_table_keeps_fields_it_can_store(store, pipeline):
    store.execute("CREATE TABLE Person (id TEXT PRIMARY KEY NOT NULL, name TEXT, age INTEGER, "
                  "_sync_status INTEGER NOT NULL DEFAULT 0) STRICT")
    pipeline.ingest([person_record("1", name="Ada", age=36)], [])

    report = pipeline.ingest([person_record("1", name="Ada L.", age="thirty-six")], [])

    assert report.field_failures == 1
    row = fetch_person(store, "1")
    assert row["name"] == "Ada L."
    assert row["age"] == 36


def test_failing_record_does_not_block_the_batch(store, pipeline, mocker):
    original = pipeline._apply_record

    def flaky(record, report):
        if record.record_id.record_name == "2":
            raise RuntimeError("boom")
        return original(record, report)

    mocker.patch.object(pipeline, "_apply_record", side_effect=flaky)
    report = pipeline.ingest([person_record(str(i), name=f"P{i}") for i in range(1, 4)], [])

    assert report.inserted == 2
    assert report.failed == 1
    assert fetch_person(store, "1") is not None
    assert fetch_person(store, "2") is None
    assert fetch_person(store, "3") is not None


def test_reserved_record_types_are_skipped(store, pipeline):
    record = RemoteRecord("_sync_tombstones", RecordID("_sync_tombstones", "1"), {"table_name": "x"})
    report = pipeline.ingest([record], [RecordDeletion(RecordID("_sync_meta", "1"), "_sync_meta")])
    assert report.skipped == 2


def test_deletion_of_missing_row_or_table_is_a_no_op(store, pipeline):
    report = pipeline.ingest([], [RecordDeletion(RecordID("Nowhere", "1"), "Nowhere")])
    assert report.deleted == 0
    assert report.failed == 0


def test_ingest_into_legacy_table_adds_status_column(store, pipeline):
    create_person_table(store, with_status=False)
    store.execute("INSERT INTO Person (id, name) VALUES ('1', 'Ada')")

    pipeline.ingest([person_record("1", name="Ada L.")], [])

    row = fetch_person(store, "1")
    assert row["name"] == "Ada L."
    assert row["_sync_status"] == SyncStatus.SYNCED


def test_pending_local_edit_is_overwritten_and_synced(store, pipeline):
    pipeline.ingest([person_record("1", name="Ada")], [])
    store.execute("UPDATE Person SET name = 'Local' WHERE id = '1'")
    assert fetch_person(store, "1")["_sync_status"] == SyncStatus.PENDING_UPLOAD

    pipeline.ingest([person_record("1", name="Remote")], [])

    row = fetch_person(store, "1")
    assert row["name"] == "Remote"
    assert row["_sync_status"] == SyncStatus.SYNCED

#
# End of test_ingestion.py
########################################################################################################################
