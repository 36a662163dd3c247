# inventory_sync/sync_api/client.py
#
#
# Imports
from typing import Optional, Dict, Any, Mapping, Union
from urllib.parse import quote
#
# 3rd-party Libraries
import httpx
from loguru import logger
#
# Local Imports
from inventory_sync.Constants import EntityType, ENTITY_ENDPOINTS, DEFAULT_REQUEST_TIMEOUT
from .exceptions import (
    SyncAPIError, NetworkUnreachableError, RemoteRejectedError, AuthenticationError, NETWORK_ERROR_PREFIX
)
from .schemas import PushResult, PullResult
from .utils import record_to_payload, since_param, extract_error_detail
#
########################################################################################################################
#
# Functions:

class InventorySyncAPIClient:
    """
    Request/response wrapper around the remote inventory API.

    `push` and `pull` never raise for HTTP or transport failures: those come
    back as failure results whose `failure` field tells a rejection by the
    remote apart from an unreachable remote.
    """
    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = DEFAULT_REQUEST_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"

        try:
            response = await client.request(method, endpoint, json=json_body, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            response_data = None
            try:
                response_data = e.response.json()
            except ValueError:
                pass  # plain-text or non-UTF-8 error bodies are common
            fallback = e.response.text[:200] if e.response.text else e.response.reason_phrase
            error_detail = extract_error_detail(response_data, fallback)
            if e.response.status_code in (401, 403):
                raise AuthenticationError(e.response.status_code, f"Authentication failed: {error_detail}",
                                          response_data=response_data)
            raise RemoteRejectedError(e.response.status_code, error_detail, response_data=response_data)
        except httpx.RequestError as e:  # ConnectError, TimeoutException, ...
            raise NetworkUnreachableError(f"Connection error to {url}: {e!r}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise RemoteRejectedError(response.status_code, "Failed to decode JSON response",
                                      response_data={"raw_text": response.text[:200]})

    async def push(self, entity_type: Union[str, EntityType], record: Mapping[str, Any]) -> PushResult:
        """
        Sends one local record: `PUT /<entity>/<remote_id>` when the record already
        has a remote id, otherwise `POST /<entity>`.
        """
        entity = EntityType(entity_type)
        endpoint = ENTITY_ENDPOINTS[entity]
        remote_id = record.get("remote_id")
        body = record_to_payload(entity, record)
        try:
            if remote_id:
                data = await self._request("PUT", f"{endpoint}/{quote(str(remote_id), safe='')}", json_body=body)
            else:
                data = await self._request("POST", endpoint, json_body=body)
        except NetworkUnreachableError as e:
            logger.warning(f"Push of {entity.value} {record.get('id')} could not reach the remote: {e}")
            return PushResult.unreachable(f"{NETWORK_ERROR_PREFIX}{e}")
        except RemoteRejectedError as e:
            logger.warning(f"Push of {entity.value} {record.get('id')} rejected: {e}")
            return PushResult.rejected(str(e))

        assigned_id = data.get("id") if isinstance(data, dict) else None
        if assigned_id is None and not remote_id:
            return PushResult.rejected("Remote response did not include an id")
        return PushResult.success(str(assigned_id) if assigned_id is not None else str(remote_id))

    async def pull(self, entity_type: Union[str, EntityType], since: Optional[str]) -> PullResult:
        """Fetches every remote record of `entity_type` updated at or after `since`."""
        entity = EntityType(entity_type)
        params = {"since": since_param(since)}
        try:
            data = await self._request("GET", ENTITY_ENDPOINTS[entity], params=params)
        except NetworkUnreachableError as e:
            logger.warning(f"Pull of {entity.value} could not reach the remote: {e}")
            return PullResult.unreachable(f"{NETWORK_ERROR_PREFIX}{e}")
        except RemoteRejectedError as e:
            logger.warning(f"Pull of {entity.value} rejected: {e}")
            return PullResult.rejected(str(e))

        if data is None:
            return PullResult.success([])
        if not isinstance(data, list):
            return PullResult.rejected(f"Malformed response: expected a JSON array, got {type(data).__name__}")
        logger.debug(f"Pulled {len(data)} {entity.value} record(s) since {params['since']}")
        return PullResult.success(data)

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", ENTITY_ENDPOINTS[EntityType.CATEGORIES])
            return True
        except SyncAPIError as e:
            logger.error(f"Connection test failed: {e}")
            return False

#
# End of inventory_sync/sync_api/client.py
########################################################################################################################
