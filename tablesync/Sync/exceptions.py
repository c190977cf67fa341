# tablesync/Sync/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class SyncError(Exception):
    """Base exception for sync engine errors."""
    pass

class ConfigurationError(SyncError):
    """Raised when the remote service identifier or other required configuration is missing or invalid."""
    pass

class SchemaError(SyncError):
    """Raised when a table or column the engine needs is missing and cannot be created."""
    def __init__(self, message: str, table: str = None):
        super().__init__(message)
        self.table = table

class ConversionError(SyncError):
    """Raised when a value cannot be converted or staged between local and remote representations."""
    pass

class TransportError(SyncError):
    """Raised for network, account or service failures of the remote transport."""
    pass

class TransportResponseError(TransportError):
    """Raised for non-2xx responses from the remote record service."""
    def __init__(self, status_code: int, message: str):
        super().__init__(f"Service Error {status_code}: {message}")
        self.status_code = status_code

class RecordNotFoundError(TransportError):
    """Raised when the remote store has no record for the requested id."""
    def __init__(self, record_id):
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id

class AccountUnavailableError(TransportError):
    """Raised when the remote account cannot be used (signed out, restricted, ...)."""
    pass

class PersistenceError(SyncError):
    """Raised when the sync state file cannot be written or read."""
    pass

#
# End of tablesync/Sync/exceptions.py
########################################################################################################################
