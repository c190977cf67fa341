# http_transport.py
# Description: Transport that talks to a JSON record service over HTTP.
#
# Imports
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar
from urllib.parse import quote
#
# Third-Party Imports
import requests
from loguru import logger
from pydantic import BaseModel, ValidationError
#
# Local Imports
from ..Sync.exceptions import (AccountUnavailableError, ConversionError, RecordNotFoundError, TransportError,
                               TransportResponseError)
from ..Sync.models import FailedRecordSave, RecordID, RemoteRecord
from .base import AccountStatus, PullResult, PushResult, RemoteTransport, TransportState
from .schemas import (AccountResponse, ChangesResponse, PushRequest, PushResponse, SaveZonesRequest,
                      SaveZonesResponse, WireRecord, deletion_from_wire, record_from_wire, record_id_from_wire,
                      record_id_to_wire, record_to_wire)
#
########################################################################################################################
#
# Classes:

ACCOUNT_ENDPOINT = "/account"
ZONES_ENDPOINT = "/zones"
RECORD_ENDPOINT = "/zones/{zone}/records/{name}"
CHANGES_ENDPOINT = "/changes"

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


class HTTPTransport(RemoteTransport):
    """
    RemoteTransport backed by an HTTP record service.

    The service assigns change tokens and filters out changes made with the same
    bearer token, so a device does not receive its own writes back.
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30.0,
                 state: Optional[TransportState] = None, staging_dir: Optional[str] = None):
        super().__init__(state)
        if not base_url:
            raise ValueError("HTTPTransport needs a base URL")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.staging_dir = staging_dir

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, endpoint: str, response_model: Type[ResponseModel],
                 json_body: Optional[Dict[str, Any]] = None, params: Optional[Dict[str, Any]] = None) -> ResponseModel:
        """
        Sends one request and validates the JSON reply.

        Raises:
            AccountUnavailableError: On 401 or 403.
            TransportResponseError: For any other non-2xx response.
            TransportError: For network failures and undecodable replies.
        """
        full_url = f"{self.base_url}{endpoint}"
        logger.debug(f"{method} {full_url}")
        send = getattr(requests, method.lower())
        kwargs: Dict[str, Any] = {"headers": self._headers(), "timeout": self.timeout}
        if json_body is not None:
            kwargs["json"] = json_body
        if params:
            kwargs["params"] = params

        try:
            response = send(full_url, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            text = e.response.text if e.response is not None else "No response body"
            if status in (401, 403):
                raise AccountUnavailableError(f"Record service refused credentials: {status} - {text}") from e
            raise TransportResponseError(status or 0, f"{full_url} - {text}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request to {full_url} failed: {e}") from e
        except ValueError as e:
            raise TransportError(f"Could not decode JSON from {full_url}: {e}") from e

        try:
            return response_model.model_validate(payload)
        except ValidationError as e:
            raise TransportError(f"Unexpected response from {full_url}: {e}") from e

    # --- Hooks ---
    def account_status(self) -> AccountStatus:
        try:
            response = self._request("GET", ACCOUNT_ENDPOINT, AccountResponse)
        except AccountUnavailableError:
            return AccountStatus.NO_ACCOUNT
        try:
            return AccountStatus(response.status)
        except ValueError:
            logger.warning(f"Record service reported unknown account status '{response.status}'")
            return AccountStatus.COULD_NOT_DETERMINE

    def save_zones(self, zone_names: Iterable[str]) -> Dict[str, Optional[str]]:
        zone_names = list(zone_names)
        response = self._request("PUT", ZONES_ENDPOINT, SaveZonesResponse,
                                 json_body=SaveZonesRequest(zones=zone_names).model_dump())
        results: Dict[str, Optional[str]] = {zone: None for zone in response.saved}
        results.update(response.failed)
        for zone in zone_names:
            results.setdefault(zone, "Not confirmed by the record service")
        return self._report_saved_zones(results)

    def fetch_record(self, record_id: RecordID) -> RemoteRecord:
        endpoint = RECORD_ENDPOINT.format(zone=quote(record_id.zone_name, safe=""),
                                          name=quote(record_id.record_name, safe=""))
        try:
            wire = self._request("GET", endpoint, WireRecord)
        except TransportResponseError as e:
            if e.status_code == 404:
                raise RecordNotFoundError(record_id) from e
            raise
        return record_from_wire(wire, self.staging_dir)

    def _push(self, saves: List[RemoteRecord], deletes: List[RecordID]) -> PushResult:
        result = PushResult()
        wire_saves = []
        by_id: Dict[RecordID, RemoteRecord] = {}
        for record in saves:
            try:
                wire_saves.append(record_to_wire(record))
                by_id[record.record_id] = record
            except ConversionError as e:
                logger.warning(f"Could not encode {record.record_id} for upload: {e}")
                result.failed_record_saves.append(FailedRecordSave(record, str(e)))

        request = PushRequest(saves=wire_saves, deletes=[record_id_to_wire(rid) for rid in deletes])
        response = self._request("POST", CHANGES_ENDPOINT, PushResponse, json_body=request.model_dump(mode="json"))

        for wire in response.saved:
            record_id = record_id_from_wire(wire.record_id)
            sent = by_id.get(record_id)
            if sent is not None:
                result.saved_records.append(sent.copy(clear_changed_keys=True))
            else:
                result.saved_records.append(record_from_wire(wire, self.staging_dir))
        result.deleted_record_ids.extend(record_id_from_wire(wire) for wire in response.deleted)
        for failure in response.failed:
            record_id = record_id_from_wire(failure.record_id)
            record = by_id.get(record_id) or RemoteRecord(record_id.zone_name, record_id)
            result.failed_record_saves.append(FailedRecordSave(record, failure.error))
        return result

    def _pull(self, token: Optional[str]) -> PullResult:
        params = {"token": token} if token else None
        response = self._request("GET", CHANGES_ENDPOINT, ChangesResponse, params=params)
        return PullResult(
            modifications=[record_from_wire(wire, self.staging_dir) for wire in response.modifications],
            deletions=[deletion_from_wire(wire) for wire in response.deletions],
            deleted_zones=list(response.deleted_zones),
            token=response.token,
            more_coming=response.more_coming,
        )

#
# End of http_transport.py
########################################################################################################################
