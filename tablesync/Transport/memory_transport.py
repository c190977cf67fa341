# memory_transport.py
# Description: In-process remote record store and the transport that talks to it.
#
# InMemoryRemoteDatabase plays the part of the remote service: it keeps records
# per zone, assigns a monotonically increasing change sequence, and answers
# "what changed since token X" queries. Several InMemoryTransport instances can
# share one database to simulate multiple devices. A device never receives its
# own changes back.
#
# Imports
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import DOWNLOADED_ASSET_PREFIX
from ..Sync.exceptions import ConversionError, RecordNotFoundError, TransportError
from ..Sync.models import Asset, FailedRecordSave, RecordDeletion, RecordID, RemoteRecord
from ..Sync.value_codec import stage_bytes
from .base import AccountStatus, PullResult, PushResult, RemoteTransport, TransportState
#
########################################################################################################################
#
# Classes:


@dataclass(frozen=True)
class _StoredAsset:
    data: bytes


@dataclass(frozen=True)
class _ChangeEntry:
    sequence: int
    kind: str  # "save", "delete" or "zone_delete"
    zone_name: str
    origin: str
    record_id: Optional[RecordID] = None
    record_type: str = ""


class InMemoryRemoteDatabase:
    """A thread-safe, in-process stand-in for the remote record service."""

    def __init__(self, staging_dir: Optional[Union[str, Path]] = None, auto_create_zones: bool = True):
        self._lock = threading.RLock()
        self._zones: Set[str] = set()
        self._records: Dict[RecordID, RemoteRecord] = {}
        self._log: List[_ChangeEntry] = []
        self._sequence = 0
        self.staging_dir = staging_dir
        self.auto_create_zones = auto_create_zones
        self.account_status = AccountStatus.AVAILABLE
        self.reachable = True
        # Saves of these records are rejected, as a server would on a constraint failure.
        self.rejected_records: Set[RecordID] = set()

    def check_reachable(self):
        if not self.reachable:
            raise TransportError("Remote database is unreachable")

    # --- Zones ---
    def zones(self) -> List[str]:
        with self._lock:
            return sorted(self._zones)

    def save_zone(self, zone_name: str):
        with self._lock:
            self._zones.add(zone_name)

    def delete_zone(self, zone_name: str, origin: str = "server"):
        """Deletes a zone and every record in it."""
        with self._lock:
            self._zones.discard(zone_name)
            for record_id in [rid for rid in self._records if rid.zone_name == zone_name]:
                del self._records[record_id]
            self._append(_ChangeEntry(self._next_sequence(), "zone_delete", zone_name, origin))

    # --- Records ---
    def save_record(self, record: RemoteRecord, origin: str = "server"):
        """
        Stores a copy of `record`, replacing any previous version.

        Raises:
            ValueError: If the save is rejected (unknown zone, unreadable asset, rejected id).
        """
        zone_name = record.record_id.zone_name
        with self._lock:
            if record.record_id in self.rejected_records:
                raise ValueError(f"Save of {record.record_id} rejected by the server")
            if zone_name not in self._zones:
                if not self.auto_create_zones:
                    raise ValueError(f"Zone '{zone_name}' does not exist")
                self._zones.add(zone_name)
            stored = RemoteRecord(record.record_type, record.record_id, self._freeze_fields(record))
            self._records[record.record_id] = stored
            self._append(_ChangeEntry(self._next_sequence(), "save", zone_name, origin,
                                      record.record_id, record.record_type))

    def delete_record(self, record_id: RecordID, origin: str = "server") -> bool:
        with self._lock:
            stored = self._records.pop(record_id, None)
            record_type = stored.record_type if stored else record_id.zone_name
            self._append(_ChangeEntry(self._next_sequence(), "delete", record_id.zone_name, origin,
                                      record_id, record_type))
            return stored is not None

    def get_record(self, record_id: RecordID) -> Optional[RemoteRecord]:
        with self._lock:
            stored = self._records.get(record_id)
            return self._materialize(stored) if stored is not None else None

    def changes_since(self, token: Optional[str], origin: str) -> PullResult:
        """Every change after `token` that did not come from `origin`, collapsed to the latest per record."""
        try:
            since = int(token) if token else 0
        except ValueError:
            logger.warning(f"Unrecognised change token {token!r}; returning all changes")
            since = 0

        with self._lock:
            latest: Dict[RecordID, _ChangeEntry] = {}
            deleted_zones: List[str] = []
            for entry in self._log:
                if entry.sequence <= since:
                    continue
                if entry.kind == "zone_delete":
                    latest = {rid: e for rid, e in latest.items() if rid.zone_name != entry.zone_name}
                    if entry.origin != origin and entry.zone_name not in deleted_zones:
                        deleted_zones.append(entry.zone_name)
                else:
                    latest[entry.record_id] = entry

            result = PullResult(deleted_zones=deleted_zones, token=str(self._sequence))
            for record_id, entry in latest.items():
                if entry.origin == origin:
                    continue
                if entry.kind == "save":
                    stored = self._records.get(record_id)
                    if stored is not None:
                        result.modifications.append(self._materialize(stored))
                else:
                    result.deletions.append(RecordDeletion(record_id, entry.record_type))
            return result

    # --- Internals ---
    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def _append(self, entry: _ChangeEntry):
        self._log.append(entry)

    def _freeze_fields(self, record: RemoteRecord) -> Dict:
        fields = {}
        for key, value in record.fields.items():
            if isinstance(value, Asset):
                try:
                    value = _StoredAsset(value.read_bytes())
                except OSError as e:
                    raise ValueError(f"Asset for field '{key}' could not be uploaded: {e}") from e
            elif isinstance(value, (bytearray, memoryview)):
                value = bytes(value)
            fields[key] = value
        return fields

    def _materialize(self, stored: RemoteRecord) -> RemoteRecord:
        fields = {}
        for key, value in stored.fields.items():
            if isinstance(value, _StoredAsset):
                try:
                    value = stage_bytes(value.data, self.staging_dir, prefix=DOWNLOADED_ASSET_PREFIX)
                except ConversionError as e:
                    logger.error(f"Could not download asset '{key}' of {stored.record_id}: {e}")
                    value = None
            fields[key] = value
        return RemoteRecord(stored.record_type, stored.record_id, fields)


class InMemoryTransport(RemoteTransport):
    """Transport for one device talking to a shared InMemoryRemoteDatabase."""

    def __init__(self, database: InMemoryRemoteDatabase, device_id: Optional[str] = None,
                 state: Optional[TransportState] = None):
        super().__init__(state)
        self.database = database
        self.device_id = device_id or uuid.uuid4().hex

    def _push(self, saves: List[RemoteRecord], deletes: List[RecordID]) -> PushResult:
        self.database.check_reachable()
        result = PushResult()
        for record in saves:
            try:
                self.database.save_record(record, origin=self.device_id)
                result.saved_records.append(record.copy(clear_changed_keys=True))
            except ValueError as e:
                logger.warning(f"Remote save of {record.record_id} failed: {e}")
                result.failed_record_saves.append(FailedRecordSave(record, str(e)))
        for record_id in deletes:
            self.database.delete_record(record_id, origin=self.device_id)
            result.deleted_record_ids.append(record_id)
        return result

    def _pull(self, token: Optional[str]) -> PullResult:
        self.database.check_reachable()
        return self.database.changes_since(token, origin=self.device_id)

    def fetch_record(self, record_id: RecordID) -> RemoteRecord:
        self.database.check_reachable()
        record = self.database.get_record(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def account_status(self) -> AccountStatus:
        self.database.check_reachable()
        return self.database.account_status

    def save_zones(self, zone_names: Iterable[str]) -> Dict[str, Optional[str]]:
        self.database.check_reachable()
        results: Dict[str, Optional[str]] = {}
        for zone_name in zone_names:
            self.database.save_zone(zone_name)
            results[zone_name] = None
        return self._report_saved_zones(results)

#
# End of memory_transport.py
########################################################################################################################
