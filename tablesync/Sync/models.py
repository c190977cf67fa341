# models.py
# Description: Data types exchanged between the sync engine and the remote transport.
#
# Imports
import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union
#
########################################################################################################################
#
# Classes:


@dataclass(frozen=True)
class RecordID:
    """Identifies a remote record. The zone maps 1:1 to a local table, the record name to the row id."""
    zone_name: str
    record_name: str

    def __str__(self) -> str:
        return f"{self.zone_name}/{self.record_name}"


@dataclass(frozen=True)
class Asset:
    """A large binary value staged in a file outside the record itself."""
    file_path: Path

    def read_bytes(self) -> bytes:
        return Path(self.file_path).read_bytes()


class RemoteRecord:
    """
    A typed, named bag of fields stored by the remote service.

    Setting a field through item assignment records the key in `changed_keys`,
    the same way a managed record keeps track of its locally modified keys. An
    empty `changed_keys` list means every field may have changed.
    """

    def __init__(self, record_type: str, record_id: RecordID,
                 fields: Optional[Dict[str, Any]] = None,
                 changed_keys: Optional[List[str]] = None):
        self.record_type = record_type
        self.record_id = record_id
        self.fields: Dict[str, Any] = dict(fields or {})
        self.changed_keys: List[str] = list(changed_keys or [])

    def __getitem__(self, key: str) -> Any:
        return self.fields.get(key)

    def __setitem__(self, key: str, value: Any):
        self.fields[key] = value
        if key not in self.changed_keys:
            self.changed_keys.append(key)

    def __contains__(self, key: str) -> bool:
        return key in self.fields

    def __iter__(self) -> Iterator[str]:
        return iter(self.fields)

    def all_keys(self) -> List[str]:
        return list(self.fields.keys())

    def keys_to_consider(self) -> List[str]:
        """The changed keys, or every key when no changed keys were reported."""
        return list(self.changed_keys) if self.changed_keys else self.all_keys()

    def copy(self, clear_changed_keys: bool = False) -> "RemoteRecord":
        return RemoteRecord(
            self.record_type,
            self.record_id,
            copy.copy(self.fields),
            [] if clear_changed_keys else list(self.changed_keys),
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, RemoteRecord):
            return NotImplemented
        return (self.record_type == other.record_type and self.record_id == other.record_id
                and self.fields == other.fields)

    def __repr__(self) -> str:
        return (f"RemoteRecord(record_type={self.record_type!r}, record_id={str(self.record_id)!r}, "
                f"keys={self.all_keys()!r}, changed_keys={self.changed_keys!r})")


class ChangeKind(Enum):
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class PendingChange:
    """A local change waiting to be handed to the transport: save (upsert) or delete one record."""
    kind: ChangeKind
    record_id: RecordID

    @classmethod
    def upsert(cls, table_name: str, row_id: str) -> "PendingChange":
        return cls(ChangeKind.UPSERT, RecordID(table_name, str(row_id)))

    @classmethod
    def delete(cls, table_name: str, row_id: str) -> "PendingChange":
        return cls(ChangeKind.DELETE, RecordID(table_name, str(row_id)))

    @property
    def is_upsert(self) -> bool:
        return self.kind is ChangeKind.UPSERT

    @property
    def is_delete(self) -> bool:
        return self.kind is ChangeKind.DELETE

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "zone": self.record_id.zone_name, "name": self.record_id.record_name}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "PendingChange":
        return cls(ChangeKind(data["kind"]), RecordID(data["zone"], data["name"]))


@dataclass(frozen=True)
class Tombstone:
    """Durable record of a deleted local row awaiting hand-off as a delete change."""
    sequence_id: int
    table_name: str
    record_id: str
    deleted_at: Optional[str] = None

    def to_pending_change(self) -> PendingChange:
        return PendingChange.delete(self.table_name, self.record_id)


@dataclass(frozen=True)
class RecordDeletion:
    """A remote deletion delivered by the transport."""
    record_id: RecordID
    record_type: str


@dataclass
class FailedRecordSave:
    record: RemoteRecord
    error: str


# Values a remote record may carry. Anything outside this set is an unsupported field type.
RemoteValue = Union[str, int, float, bytes, datetime, Asset, None]


@dataclass
class ChangeScope:
    """Limits which pending changes a send pass should consider. No zones means every zone."""
    zone_names: Optional[frozenset] = None
    record_ids: Optional[frozenset] = None

    def contains(self, change: PendingChange) -> bool:
        if self.zone_names is not None and change.record_id.zone_name not in self.zone_names:
            return False
        if self.record_ids is not None and change.record_id not in self.record_ids:
            return False
        return True

    @classmethod
    def all(cls) -> "ChangeScope":
        return cls()

    @classmethod
    def zones(cls, zone_names) -> "ChangeScope":
        return cls(zone_names=frozenset(zone_names))


@dataclass
class SendChangesContext:
    """Passed to the batch provider when the transport asks for outgoing changes."""
    scope: ChangeScope = field(default_factory=ChangeScope.all)
    reason: str = "manual"

#
# End of models.py
########################################################################################################################
