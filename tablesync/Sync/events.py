# events.py
# Description: The closed set of events a remote transport delivers to the sync engine.
#
# Imports
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Union
#
# Local Imports
from .models import FailedRecordSave, RecordDeletion, RecordID, RemoteRecord
#
########################################################################################################################
#
# Classes:


class AccountChangeType(Enum):
    SIGN_IN = "sign_in"
    SIGN_OUT = "sign_out"
    SWITCH_ACCOUNTS = "switch_accounts"


@dataclass
class StateUpdate:
    """The transport's resumption cursor changed and should be persisted."""
    cursor: bytes


@dataclass
class AccountChange:
    change_type: AccountChangeType


@dataclass
class FetchedDatabaseChanges:
    """Zone-level changes. Every deleted zone maps to a local table."""
    deleted_zones: List[str] = field(default_factory=list)


@dataclass
class FetchedRecordZoneChanges:
    modifications: List[RemoteRecord] = field(default_factory=list)
    deletions: List[RecordDeletion] = field(default_factory=list)


@dataclass
class SentDatabaseChanges:
    saved_zones: List[str] = field(default_factory=list)


@dataclass
class SentRecordZoneChanges:
    saved_records: List[RemoteRecord] = field(default_factory=list)
    failed_record_saves: List[FailedRecordSave] = field(default_factory=list)
    deleted_record_ids: List[RecordID] = field(default_factory=list)


# Lifecycle markers. They carry no data and need no handling.
@dataclass
class WillFetchChanges:
    pass


@dataclass
class DidFetchChanges:
    pass


@dataclass
class WillFetchRecordZoneChanges:
    zone_name: str = ""


@dataclass
class DidFetchRecordZoneChanges:
    zone_name: str = ""


@dataclass
class WillSendChanges:
    pass


@dataclass
class DidSendChanges:
    pass


SyncEvent = Union[
    StateUpdate,
    AccountChange,
    FetchedDatabaseChanges,
    FetchedRecordZoneChanges,
    SentDatabaseChanges,
    SentRecordZoneChanges,
    WillFetchChanges,
    DidFetchChanges,
    WillFetchRecordZoneChanges,
    DidFetchRecordZoneChanges,
    WillSendChanges,
    DidSendChanges,
]

LIFECYCLE_EVENTS = (
    WillFetchChanges,
    DidFetchChanges,
    WillFetchRecordZoneChanges,
    DidFetchRecordZoneChanges,
    WillSendChanges,
    DidSendChanges,
)

#
# End of events.py
########################################################################################################################
