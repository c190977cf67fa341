# tablesync/Sync/__init__.py
from .exceptions import (
    SyncError, ConfigurationError, SchemaError, ConversionError,
    TransportError, TransportResponseError, RecordNotFoundError,
    AccountUnavailableError, PersistenceError
)
from .models import (
    RecordID, Asset, RemoteRecord, ChangeKind, PendingChange, Tombstone,
    RecordDeletion, FailedRecordSave, ChangeScope, SendChangesContext
)

__all__ = [
    "SyncError", "ConfigurationError", "SchemaError", "ConversionError",
    "TransportError", "TransportResponseError", "RecordNotFoundError",
    "AccountUnavailableError", "PersistenceError",
    "RecordID", "Asset", "RemoteRecord", "ChangeKind", "PendingChange", "Tombstone",
    "RecordDeletion", "FailedRecordSave", "ChangeScope", "SendChangesContext"
]
