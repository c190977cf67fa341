# schemas.py
# Description: Wire models for the JSON record service used by HTTPTransport.
#
# Imports
import base64
import binascii
from datetime import date, datetime
from typing import Any, Dict, List, Optional
#
# Third-Party Imports
from loguru import logger
from pydantic import BaseModel, Field
#
# Local Imports
from ..Constants import DOWNLOADED_ASSET_PREFIX
from ..Sync.exceptions import ConversionError
from ..Sync.models import Asset, RecordDeletion, RecordID, RemoteRecord
from ..Sync.value_codec import format_timestamp, parse_timestamp, stage_bytes
#
########################################################################################################################
#
# Functions:


class WireValue(BaseModel):
    type: str
    value: Any = None


class WireRecordID(BaseModel):
    zone: str
    name: str


class WireRecord(BaseModel):
    record_type: str
    record_id: WireRecordID
    fields: Dict[str, WireValue] = Field(default_factory=dict)
    changed_keys: List[str] = Field(default_factory=list)


class WireDeletion(BaseModel):
    record_id: WireRecordID
    record_type: str = ""


class WireFailure(BaseModel):
    record_id: WireRecordID
    error: str = ""


class AccountResponse(BaseModel):
    status: str


class SaveZonesRequest(BaseModel):
    zones: List[str]


class SaveZonesResponse(BaseModel):
    saved: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)


class PushRequest(BaseModel):
    saves: List[WireRecord] = Field(default_factory=list)
    deletes: List[WireRecordID] = Field(default_factory=list)


class PushResponse(BaseModel):
    saved: List[WireRecord] = Field(default_factory=list)
    deleted: List[WireRecordID] = Field(default_factory=list)
    failed: List[WireFailure] = Field(default_factory=list)


class ChangesResponse(BaseModel):
    modifications: List[WireRecord] = Field(default_factory=list)
    deletions: List[WireDeletion] = Field(default_factory=list)
    deleted_zones: List[str] = Field(default_factory=list)
    token: Optional[str] = None
    more_coming: bool = False


# --- Conversion helpers ---
def record_id_to_wire(record_id: RecordID) -> WireRecordID:
    return WireRecordID(zone=record_id.zone_name, name=record_id.record_name)


def record_id_from_wire(wire: WireRecordID) -> RecordID:
    return RecordID(wire.zone, wire.name)


def encode_value(value: Any) -> Optional[WireValue]:
    """
    Tags a remote value for the wire. Returns None for types the service cannot store.

    Raises:
        ConversionError: If a staged asset cannot be read.
    """
    if value is None:
        return WireValue(type="null")
    if isinstance(value, str):
        return WireValue(type="string", value=value)
    if isinstance(value, bool):
        return WireValue(type="int64", value=int(value))
    if isinstance(value, int):
        return WireValue(type="int64", value=value)
    if isinstance(value, float):
        return WireValue(type="double", value=value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return WireValue(type="bytes", value=base64.b64encode(bytes(value)).decode("ascii"))
    if isinstance(value, Asset):
        try:
            data = value.read_bytes()
        except OSError as e:
            raise ConversionError(f"Could not read asset {value.file_path}: {e}") from e
        return WireValue(type="asset", value=base64.b64encode(data).decode("ascii"))
    if isinstance(value, datetime):
        return WireValue(type="date", value=format_timestamp(value))
    if isinstance(value, date):
        return WireValue(type="date", value=format_timestamp(datetime(value.year, value.month, value.day)))
    return None


_DROP = object()


def decode_value(wire: WireValue, staging_dir=None) -> Any:
    """Turns a tagged wire value back into a remote value. Unknown or malformed values yield `_DROP`."""
    try:
        if wire.type == "null":
            return None
        if wire.type == "string":
            return str(wire.value)
        if wire.type == "int64":
            return int(wire.value)
        if wire.type == "double":
            return float(wire.value)
        if wire.type == "bytes":
            return base64.b64decode(wire.value, validate=True)
        if wire.type == "asset":
            return stage_bytes(base64.b64decode(wire.value, validate=True), staging_dir,
                               prefix=DOWNLOADED_ASSET_PREFIX)
        if wire.type == "date":
            parsed = parse_timestamp(str(wire.value))
            return parsed if parsed is not None else _DROP
    except (TypeError, ValueError, binascii.Error, ConversionError) as e:
        logger.warning(f"Dropping malformed '{wire.type}' value from the wire: {e}")
        return _DROP
    return _DROP


def record_to_wire(record: RemoteRecord) -> WireRecord:
    fields = {}
    for key, value in record.fields.items():
        wire_value = encode_value(value)
        if wire_value is None:
            logger.debug(f"Not sending field '{key}' of {record.record_id}: unsupported type {type(value).__name__}")
            continue
        fields[key] = wire_value
    return WireRecord(
        record_type=record.record_type,
        record_id=record_id_to_wire(record.record_id),
        fields=fields,
        changed_keys=list(record.changed_keys),
    )


def record_from_wire(wire: WireRecord, staging_dir=None) -> RemoteRecord:
    fields = {}
    for key, wire_value in wire.fields.items():
        value = decode_value(wire_value, staging_dir)
        if value is _DROP:
            continue
        fields[key] = value
    return RemoteRecord(wire.record_type, record_id_from_wire(wire.record_id), fields, wire.changed_keys)


def deletion_from_wire(wire: WireDeletion) -> RecordDeletion:
    record_id = record_id_from_wire(wire.record_id)
    return RecordDeletion(record_id, wire.record_type or record_id.zone_name)

#
# End of schemas.py
########################################################################################################################
