# tablesync/Transport/__init__.py
from typing import Optional

from .base import (
    AccountStatus, TransportState, RecordZoneChangeBatch, PushResult,
    PullResult, SendSummary, RemoteTransport
)
from .memory_transport import InMemoryRemoteDatabase, InMemoryTransport
from .http_transport import HTTPTransport


def create_transport(settings, database: Optional[InMemoryRemoteDatabase] = None) -> RemoteTransport:
    """Builds the transport named by `settings.transport_kind` ("memory" or "http")."""
    kind = (settings.transport_kind or "memory").lower()
    if kind == "memory":
        return InMemoryTransport(database or InMemoryRemoteDatabase(settings.asset_staging_dir))
    if kind == "http":
        return HTTPTransport(settings.base_url, token=settings.api_token, timeout=settings.timeout,
                             staging_dir=settings.asset_staging_dir)
    raise ValueError(f"Unknown transport kind '{settings.transport_kind}'")


__all__ = [
    "AccountStatus", "TransportState", "RecordZoneChangeBatch", "PushResult",
    "PullResult", "SendSummary", "RemoteTransport",
    "InMemoryRemoteDatabase", "InMemoryTransport", "HTTPTransport",
    "create_transport"
]
