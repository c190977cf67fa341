# test_state_persistence.py
#
#
# Imports
import json
#
# Third-Party Imports
import pytest
#
# Local Imports
from tablesync.Sync.state_persistence import SyncStatePersistence
from tablesync.Sync.models import PendingChange
from tablesync.Transport.base import TransportState
#
#######################################################################################################################
#
# Functions:


@pytest.fixture
def persistence(tmp_path):
    return SyncStatePersistence(tmp_path / "notes.db")


def test_state_file_sits_next_to_database(tmp_path, persistence):
    assert persistence.path == tmp_path / "notes.db.syncstate"
    assert persistence.enabled


def test_round_trip(persistence):
    cursor = b'{"token": "7", "pending": []}'
    assert persistence.save(cursor) is True
    assert persistence.load() == cursor


def test_file_format(persistence):
    persistence.save(b"\x00\xffcursor")
    document = json.loads(persistence.path.read_text(encoding="utf-8"))

    assert document["format"] == 1
    assert document["saved_at"].endswith("Z")
    assert "cursor" in document
    assert not persistence.path.with_name(persistence.path.name + ".tmp").exists()


def test_missing_file_means_no_cursor(persistence):
    assert persistence.load() is None


@pytest.mark.parametrize("content", [
    "not json at all",
    json.dumps({"format": 99, "cursor": "AAAA"}),
    json.dumps({"format": 1}),
    json.dumps({"format": 1, "cursor": "%%% not base64 %%%"}),
    json.dumps(["a", "list"]),
])
def test_corrupt_file_means_no_cursor(persistence, content):
    persistence.path.write_text(content, encoding="utf-8")
    assert persistence.load() is None


def test_memory_database_has_no_state_file():
    persistence = SyncStatePersistence(":memory:")
    assert persistence.path is None
    assert persistence.save(b"cursor") is False
    assert persistence.load() is None


def test_write_failure_is_reported_not_raised(persistence, mocker):
    mocker.patch("tablesync.Sync.state_persistence.os.replace", side_effect=OSError("read-only"))
    assert persistence.save(b"cursor") is False


def test_clear(persistence):
    persistence.save(b"cursor")
    persistence.clear()
    assert not persistence.path.exists()
    persistence.clear()


def test_transport_cursor_survives_a_restart(persistence):
    state = TransportState(server_token="12")
    state.add([PendingChange.upsert("Person", "1"), PendingChange.delete("Person", "2")])
    persistence.save(state.serialization)

    restored = TransportState()
    restored.restore(persistence.load())

    assert restored.server_token == "12"
    assert restored.pending_changes == [PendingChange.upsert("Person", "1"), PendingChange.delete("Person", "2")]


def test_restore_rejects_foreign_cursor():
    with pytest.raises(ValueError):
        TransportState().restore(b"\x00 not json")

#
# End of test_state_persistence.py
########################################################################################################################
