# inventory_sync/sync_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

# Prefix carried by every failure message caused by the transport rather than the remote.
NETWORK_ERROR_PREFIX = "Network error: "


class SyncAPIError(Exception):
    """Base exception for sync_api errors."""
    pass

class NetworkUnreachableError(SyncAPIError):
    """Raised for DNS, connection, timeout and other transport-level failures."""
    pass

class RemoteRejectedError(SyncAPIError):
    """Raised for non-2xx responses or responses that cannot be interpreted."""
    def __init__(self, status_code: int, message: str, response_data: dict = None):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.response_data = response_data or {}

class AuthenticationError(RemoteRejectedError):
    """Raised when the remote refuses the API key (401/403)."""
    pass

#
# End of inventory_sync/sync_api/exceptions.py
########################################################################################################################
