# tablesync/__init__.py
from .DB.Local_Store import LocalStore, LocalStoreError, StoreSchemaError, ConflictError
from .Sync.exceptions import (
    SyncError, ConfigurationError, SchemaError, ConversionError,
    TransportError, RecordNotFoundError, AccountUnavailableError, PersistenceError
)
from .Sync.orchestrator import SyncOrchestrator, SyncReport
from .Transport import HTTPTransport, InMemoryRemoteDatabase, InMemoryTransport, create_transport
from .config import SyncSettings, load_sync_settings

__version__ = "0.1.0"

__all__ = [
    "LocalStore", "LocalStoreError", "StoreSchemaError", "ConflictError",
    "SyncError", "ConfigurationError", "SchemaError", "ConversionError",
    "TransportError", "RecordNotFoundError", "AccountUnavailableError", "PersistenceError",
    "SyncOrchestrator", "SyncReport",
    "HTTPTransport", "InMemoryRemoteDatabase", "InMemoryTransport", "create_transport",
    "SyncSettings", "load_sync_settings"
]
