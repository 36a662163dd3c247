# inventory_sync/sync_api/__init__.py
from .client import InventorySyncAPIClient
from .exceptions import (
    SyncAPIError, NetworkUnreachableError, RemoteRejectedError, AuthenticationError, NETWORK_ERROR_PREFIX
)
from .schemas import RemoteRecord, PushResult, PullResult, FailureKind

__all__ = [
    "InventorySyncAPIClient",
    "SyncAPIError", "NetworkUnreachableError", "RemoteRejectedError", "AuthenticationError",
    "NETWORK_ERROR_PREFIX",
    "RemoteRecord", "PushResult", "PullResult", "FailureKind",
]
