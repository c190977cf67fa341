# state_persistence.py
# Description: Checkpoints the transport cursor to a side-car file next to the database.
#
# Imports
import base64
import binascii
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import STATE_FILE_FORMAT_VERSION, STATE_FILE_SUFFIX
from .exceptions import PersistenceError
from .value_codec import format_timestamp
#
########################################################################################################################
#
# Functions:


class SyncStatePersistence:
    """
    Saves and loads the opaque sync cursor.

    The file lives at `<database path><suffix>` and holds a small JSON document
    with the cursor base64-encoded. In-memory databases have no state file.
    """

    def __init__(self, db_path: Optional[Union[str, Path]], suffix: str = STATE_FILE_SUFFIX):
        if db_path is None or str(db_path) == ":memory:":
            self.path: Optional[Path] = None
        else:
            self.path = Path(str(db_path) + suffix)

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def save(self, cursor: bytes) -> bool:
        """Writes the cursor. Returns False (after logging) if it could not be written."""
        if self.path is None:
            return False
        try:
            self._write(cursor)
            logger.debug(f"Saved sync state ({len(cursor)} bytes) to {self.path}")
            return True
        except PersistenceError as e:
            logger.error(f"{e}")
            return False

    def load(self) -> Optional[bytes]:
        """Reads the cursor. A missing or unreadable file means there is no prior cursor."""
        if self.path is None:
            return None
        if not self.path.exists():
            logger.info(f"No sync state file at {self.path}; starting without a cursor")
            return None
        try:
            cursor = self._read()
            logger.debug(f"Loaded sync state ({len(cursor)} bytes) from {self.path}")
            return cursor
        except PersistenceError as e:
            logger.warning(f"{e}. Starting without a cursor.")
            return None

    def clear(self):
        if self.path is None:
            return
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove sync state file {self.path}: {e}")

    def _write(self, cursor: bytes):
        document = {
            "format": STATE_FILE_FORMAT_VERSION,
            "saved_at": format_timestamp(datetime.now(timezone.utc)),
            "cursor": base64.b64encode(cursor).decode("ascii"),
        }
        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(document, f)
            os.replace(temp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Could not write sync state file {self.path}: {e}") from e

    def _read(self) -> bytes:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read sync state file {self.path}: {e}") from e

        if not isinstance(document, dict) or document.get("format") != STATE_FILE_FORMAT_VERSION:
            raise PersistenceError(f"Sync state file {self.path} has an unknown format")
        try:
            return base64.b64decode(document["cursor"], validate=True)
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise PersistenceError(f"Sync state file {self.path} holds no valid cursor: {e}") from e

#
# End of state_persistence.py
########################################################################################################################
