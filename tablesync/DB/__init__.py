# tablesync/DB/__init__.py
from .Local_Store import LocalStore, LocalStoreError, StoreSchemaError, ConflictError

__all__ = ["LocalStore", "LocalStoreError", "StoreSchemaError", "ConflictError"]
