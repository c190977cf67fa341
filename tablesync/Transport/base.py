# base.py
# Description: Remote transport abstraction shared by every transport implementation.
#
# A transport owns the pending change set and the server change token. It pulls
# outgoing records from its delegate (the sync engine) through a batch provider,
# pushes them, and reports everything that happened as events. Concrete
# transports only implement the network-facing hooks.
#
# Imports
import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Sync.events import (DidFetchChanges, DidFetchRecordZoneChanges, DidSendChanges, FetchedDatabaseChanges,
                           FetchedRecordZoneChanges, SentDatabaseChanges, SentRecordZoneChanges, StateUpdate,
                           SyncEvent, WillFetchChanges, WillFetchRecordZoneChanges, WillSendChanges)
from ..Sync.models import (ChangeScope, FailedRecordSave, PendingChange, RecordDeletion, RecordID,
                           RemoteRecord, SendChangesContext)
from ..Sync.value_codec import discard_temporary_assets
#
########################################################################################################################
#
# Classes:


class AccountStatus(Enum):
    AVAILABLE = "available"
    NO_ACCOUNT = "no_account"
    RESTRICTED = "restricted"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    COULD_NOT_DETERMINE = "could_not_determine"


class TransportState:
    """
    Pending changes plus the server change token. Thread-safe.

    `serialization` is the opaque cursor the engine persists: JSON bytes holding
    the token and the pending set, so queued changes survive a restart.
    """

    def __init__(self, server_token: Optional[str] = None, pending_changes: Iterable[PendingChange] = ()):
        self._lock = threading.RLock()
        self._server_token = server_token
        # dict keeps insertion order and doubles as a set
        self._pending: Dict[PendingChange, None] = dict.fromkeys(pending_changes)

    @property
    def pending_changes(self) -> List[PendingChange]:
        with self._lock:
            return list(self._pending)

    @property
    def server_token(self) -> Optional[str]:
        with self._lock:
            return self._server_token

    @server_token.setter
    def server_token(self, token: Optional[str]):
        with self._lock:
            self._server_token = token

    def add(self, changes: Iterable[PendingChange]):
        with self._lock:
            for change in changes:
                self._pending[change] = None

    def remove(self, changes: Iterable[PendingChange]):
        with self._lock:
            for change in changes:
                self._pending.pop(change, None)

    @property
    def serialization(self) -> bytes:
        with self._lock:
            document = {
                "token": self._server_token,
                "pending": [change.to_dict() for change in self._pending],
            }
        return json.dumps(document, sort_keys=True).encode("utf-8")

    def restore(self, cursor: bytes):
        """
        Replaces the token with the one in `cursor` and merges its pending changes.

        Raises:
            ValueError: If the cursor is not a serialization produced by this class.
        """
        try:
            document = json.loads(cursor.decode("utf-8"))
            token = document.get("token")
            pending = [PendingChange.from_dict(item) for item in document.get("pending", [])]
        except (UnicodeDecodeError, json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Unrecognised transport cursor: {e}") from e
        with self._lock:
            self._server_token = token
            for change in pending:
                self._pending[change] = None


@dataclass
class RecordZoneChangeBatch:
    """Outgoing changes for one push and a provider that resolves upserts into records on demand."""
    pending_changes: List[PendingChange]
    record_provider: Callable[[RecordID], Optional[RemoteRecord]]


class SyncEngineDelegate(Protocol):
    def handle_event(self, event: SyncEvent) -> None: ...

    def next_record_zone_change_batch(self, context: SendChangesContext) -> Optional[RecordZoneChangeBatch]: ...


@dataclass
class PushResult:
    saved_records: List[RemoteRecord] = field(default_factory=list)
    deleted_record_ids: List[RecordID] = field(default_factory=list)
    failed_record_saves: List[FailedRecordSave] = field(default_factory=list)


@dataclass
class PullResult:
    modifications: List[RemoteRecord] = field(default_factory=list)
    deletions: List[RecordDeletion] = field(default_factory=list)
    deleted_zones: List[str] = field(default_factory=list)
    token: Optional[str] = None
    more_coming: bool = False


@dataclass
class SendSummary:
    saved: int = 0
    deleted: int = 0
    failed: int = 0


def discard_record_assets(records: Iterable[RemoteRecord]):
    """Deletes the temp files behind the staged or downloaded assets of `records` once they are sent."""
    discard_temporary_assets(value for record in records for value in record.fields.values())


class RemoteTransport:
    """
    Base class for remote transports.

    Subclasses implement `_push`, `_pull`, `fetch_record`, `account_status` and
    `save_zones`. Network and service failures must surface as `TransportError`.
    """

    def __init__(self, state: Optional[TransportState] = None, max_batches: int = 100):
        self.state = state or TransportState()
        self.delegate: Optional[SyncEngineDelegate] = None
        self.max_batches = max_batches

    def set_delegate(self, delegate: SyncEngineDelegate):
        self.delegate = delegate

    # --- Hooks ---
    def _push(self, saves: List[RemoteRecord], deletes: List[RecordID]) -> PushResult:
        raise NotImplementedError

    def _pull(self, token: Optional[str]) -> PullResult:
        raise NotImplementedError

    def fetch_record(self, record_id: RecordID) -> RemoteRecord:
        """Returns the stored record. Raises RecordNotFoundError when there is none."""
        raise NotImplementedError

    def account_status(self) -> AccountStatus:
        raise NotImplementedError

    def save_zones(self, zone_names: Iterable[str]) -> Dict[str, Optional[str]]:
        """Creates zones that do not exist yet. Maps every zone name to an error message, or None on success."""
        raise NotImplementedError

    # --- Event delivery ---
    def _emit(self, event: SyncEvent):
        if self.delegate is None:
            return
        try:
            self.delegate.handle_event(event)
        except Exception:
            logger.exception(f"Delegate failed to handle {type(event).__name__}")

    def _report_saved_zones(self, results: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
        saved, _ = check_zone_results(results)
        if saved:
            self._emit(SentDatabaseChanges(saved_zones=saved))
        return results

    # --- Sending ---
    def send_changes(self, scope: Optional[ChangeScope] = None, reason: str = "manual") -> SendSummary:
        """
        Pushes pending changes until the delegate has nothing more to offer.

        Raises:
            TransportError: If a push fails. Changes that were not confirmed stay pending.
        """
        summary = SendSummary()
        if self.delegate is None:
            logger.warning("send_changes called without a delegate; nothing to send")
            return summary

        self._emit(WillSendChanges())
        try:
            for _ in range(self.max_batches):
                batch = self.delegate.next_record_zone_change_batch(
                    SendChangesContext(scope=scope or ChangeScope.all(), reason=reason))
                if batch is None or not batch.pending_changes:
                    break
                if not self._send_batch(batch, summary):
                    break
        finally:
            self._emit(DidSendChanges())
        return summary

    def _send_batch(self, batch: RecordZoneChangeBatch, summary: SendSummary) -> bool:
        """Sends one batch. Returns False when it made no progress."""
        saves: List[RemoteRecord] = []
        deletes: List[RecordID] = []
        for change in batch.pending_changes:
            if change.is_delete:
                deletes.append(change.record_id)
                continue
            record = batch.record_provider(change.record_id)
            if record is not None:
                saves.append(record)

        if not saves and not deletes:
            return bool(batch.pending_changes) and self._made_progress(batch.pending_changes)

        try:
            result = self._push(saves, deletes)
        finally:
            discard_record_assets(saves)

        confirmed = [PendingChange.upsert(r.record_id.zone_name, r.record_id.record_name)
                     for r in result.saved_records]
        confirmed += [PendingChange.delete(rid.zone_name, rid.record_name) for rid in result.deleted_record_ids]
        # A failed save is retried through the row's status, not through the pending set.
        confirmed += [PendingChange.upsert(f.record.record_id.zone_name, f.record.record_id.record_name)
                      for f in result.failed_record_saves]
        self.state.remove(confirmed)
        self._emit(StateUpdate(cursor=self.state.serialization))

        summary.saved += len(result.saved_records)
        summary.deleted += len(result.deleted_record_ids)
        summary.failed += len(result.failed_record_saves)
        logger.info(f"Pushed {len(saves)} save(s) and {len(deletes)} delete(s): "
                    f"{len(result.saved_records)} saved, {len(result.deleted_record_ids)} deleted, "
                    f"{len(result.failed_record_saves)} failed")

        self._emit(SentRecordZoneChanges(
            saved_records=result.saved_records,
            failed_record_saves=result.failed_record_saves,
            deleted_record_ids=result.deleted_record_ids,
        ))
        return self._made_progress(batch.pending_changes)

    def _made_progress(self, offered: List[PendingChange]) -> bool:
        still_pending = set(self.state.pending_changes)
        return any(change not in still_pending for change in offered)

    # --- Fetching ---
    def fetch_changes(self) -> int:
        """
        Pulls remote changes since the stored token and delivers them as events.

        Returns:
            The number of modifications and deletions delivered.

        Raises:
            TransportError: If a pull fails. The token is left where it was.
        """
        delivered = 0
        self._emit(WillFetchChanges())
        try:
            for _ in range(self.max_batches):
                result = self._pull(self.state.server_token)
                delivered += self._deliver_pull(result)
                if not result.more_coming:
                    break
        finally:
            self._emit(DidFetchChanges())
        return delivered

    def _deliver_pull(self, result: PullResult) -> int:
        if result.deleted_zones:
            self._emit(FetchedDatabaseChanges(deleted_zones=list(result.deleted_zones)))

        zones = sorted({r.record_id.zone_name for r in result.modifications}
                       | {d.record_id.zone_name for d in result.deletions})
        if result.modifications or result.deletions:
            for zone in zones:
                self._emit(WillFetchRecordZoneChanges(zone_name=zone))
            self._emit(FetchedRecordZoneChanges(modifications=result.modifications, deletions=result.deletions))
            for zone in zones:
                self._emit(DidFetchRecordZoneChanges(zone_name=zone))

        if result.token is not None and result.token != self.state.server_token:
            self.state.server_token = result.token
            self._emit(StateUpdate(cursor=self.state.serialization))
        return len(result.modifications) + len(result.deletions)


def check_zone_results(results: Dict[str, Optional[str]]) -> Tuple[List[str], Dict[str, str]]:
    """Splits a `save_zones` result into saved zone names and failures."""
    saved = [zone for zone, error in results.items() if error is None]
    failed = {zone: error for zone, error in results.items() if error is not None}
    return saved, failed

#
# End of base.py
########################################################################################################################
