# value_codec.py
# Description: Conversion between local column values and remote record fields.
#
# Local values are what sqlite3 hands back: int, float, str, bytes or None.
# Remote values are looser: strings, 64-bit integers, doubles, inline bytes,
# staged assets, dates and None. The mapping is asymmetric for dates: a remote
# date becomes an internet date-time string locally, and any local string that
# parses as one is written back as a date, so dates round-trip without a
# separate schema flag.
#
# Imports
import re
import tempfile
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import BOOKKEEPING_COLUMNS, DOWNLOADED_ASSET_PREFIX, STAGED_ASSET_PREFIX
from .exceptions import ConversionError
from .models import Asset, RemoteRecord
#
########################################################################################################################
#
# Functions:

LocalValue = Union[int, float, str, bytes, None]

# Marker for remote values of a type the codec does not understand. Such fields are dropped.
UNSUPPORTED = object()

_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(Z|[+-]\d{2}:\d{2})$")


class ColumnType(Enum):
    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"
    BLOB = "BLOB"


def format_timestamp(value: datetime) -> str:
    """Formats a datetime as `YYYY-MM-DDTHH:MM:SSZ` in UTC. Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return (f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
            f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}Z")


def parse_timestamp(text: str) -> Optional[datetime]:
    """Parses an internet date-time string (no fractional seconds). Returns None for anything else."""
    if not _TIMESTAMP_RE.match(text):
        return None
    try:
        return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S%z").astimezone(timezone.utc)
    except ValueError:
        return None


def stage_bytes(data: bytes, staging_dir: Optional[Union[str, Path]] = None,
                prefix: str = STAGED_ASSET_PREFIX) -> Asset:
    """Writes `data` to a new temporary file and returns an Asset pointing at it."""
    try:
        with tempfile.NamedTemporaryFile(dir=staging_dir, prefix=prefix, suffix=".bin",
                                         delete=False) as staged:
            staged.write(data)
        return Asset(Path(staged.name))
    except OSError as e:
        raise ConversionError(f"Could not stage {len(data)} bytes as an asset: {e}") from e


def discard_temporary_assets(values: Iterable[Any]) -> int:
    """
    Deletes the temp files behind staged (outgoing) and downloaded (incoming) assets.

    Assets pointing anywhere else belong to the caller and are left alone.
    Returns the number of files removed.
    """
    removed = 0
    for value in values:
        if not isinstance(value, Asset):
            continue
        path = Path(value.file_path)
        if not path.name.startswith((STAGED_ASSET_PREFIX, DOWNLOADED_ASSET_PREFIX)):
            continue
        try:
            path.unlink(missing_ok=True)
            removed += 1
        except OSError as e:
            logger.debug(f"Could not remove temporary asset {path}: {e}")
    return removed


def infer_column_type(value: Any) -> ColumnType:
    """Column type for a new column created from a remote value. Dates, text, null and unknown types map to TEXT."""
    if isinstance(value, bool) or isinstance(value, int):
        return ColumnType.INTEGER
    if isinstance(value, float):
        return ColumnType.REAL
    if isinstance(value, (bytes, bytearray, memoryview, Asset)):
        return ColumnType.BLOB
    return ColumnType.TEXT


def values_equal(incoming: LocalValue, current: LocalValue) -> bool:
    """Variant-aware equality: same variant and same value. Null only equals null."""
    if incoming is None or current is None:
        return incoming is None and current is None
    if type(incoming) is not type(current):
        return False
    return incoming == current


def remote_to_local(value: Any) -> Any:
    """
    Converts one remote field value to a local column value.

    Returns the `UNSUPPORTED` marker for value types the codec does not know.
    A staged asset that cannot be read becomes None.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return format_timestamp(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
    if isinstance(value, Asset):
        try:
            return value.read_bytes()
        except OSError as e:
            logger.error(f"Could not read staged asset {value.file_path}: {e}. Using NULL instead.")
            return None
    return UNSUPPORTED


class ValueCodec:
    """Converts whole records to rows and rows back onto records."""

    def __init__(self, staging_dir: Optional[Union[str, Path]] = None):
        self.staging_dir = Path(staging_dir) if staging_dir else None
        if self.staging_dir is not None:
            self.staging_dir.mkdir(parents=True, exist_ok=True)

    def record_to_row(self, record: RemoteRecord) -> Dict[str, LocalValue]:
        """Converts every supported field of `record`. Bookkeeping names and unsupported values are left out."""
        row: Dict[str, LocalValue] = {}
        for key in record.all_keys():
            if key in BOOKKEEPING_COLUMNS:
                continue
            converted = remote_to_local(record[key])
            if converted is UNSUPPORTED:
                logger.debug(f"Dropping field '{key}' of {record.record_id}: unsupported type "
                             f"{type(record[key]).__name__}")
                continue
            row[key] = converted
        return row

    def local_to_remote(self, value: Any) -> Any:
        """
        Converts one local column value to a remote field value. Blobs are staged as assets.

        Text with a `+HH:MM` / `-HH:MM` offset is sent as the same instant in UTC, so it
        comes back from the remote as `...Z` text rather than byte-for-byte.
        """
        if value is None:
            return None
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            parsed = parse_timestamp(value)
            return parsed if parsed is not None else value
        if isinstance(value, (bytes, bytearray, memoryview)):
            try:
                return stage_bytes(bytes(value), self.staging_dir)
            except ConversionError as e:
                logger.error(f"{e}. Clearing the field instead.")
                return None
        logger.warning(f"Unexpected local value type {type(value).__name__}; sending it as text.")
        return str(value)

    def apply_row_to_record(self, row: Mapping[str, Any], record: RemoteRecord) -> RemoteRecord:
        """
        Writes the local row's columns onto `record`, leaving fields the row does not have untouched.

        Bookkeeping columns are never written.
        """
        for key, value in row.items():
            if key in BOOKKEEPING_COLUMNS:
                continue
            record[key] = self.local_to_remote(value)
        return record

#
# End of value_codec.py
########################################################################################################################
