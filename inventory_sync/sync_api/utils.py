# inventory_sync/sync_api/utils.py
#
#
# Imports
from typing import Dict, Any, Mapping, Optional
#
# Local Imports
from inventory_sync.Constants import EntityType, MERGE_FIELDS, EPOCH_TIMESTAMP
from inventory_sync.Utils.time_utils import normalize_timestamp
#
#######################################################################################################################
#
# Functions:

def record_to_payload(entity_type: EntityType, record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Builds the request body for pushing a local record.

    Sends the local `id`, the entity's payload fields, `version` and the
    timestamps. Sync bookkeeping columns stay local. None values are dropped.
    """
    payload: Dict[str, Any] = {"id": record.get("id")}
    for field in MERGE_FIELDS[EntityType(entity_type)]:
        payload[field] = record.get(field)
    for field in ("version", "created_at", "updated_at"):
        payload[field] = record.get(field)
    return {key: value for key, value in payload.items() if value is not None}


def since_param(since: Optional[str]) -> str:
    """`since` query value; the epoch when nothing has been synced yet."""
    return normalize_timestamp(since) or EPOCH_TIMESTAMP


def extract_error_detail(response_data: Any, fallback: str) -> str:
    if isinstance(response_data, dict):
        detail = response_data.get("detail")
        if isinstance(detail, list) and detail and isinstance(detail[0], dict):
            loc = ".".join(map(str, detail[0].get("loc", [])))
            return f"Validation Error: {detail[0].get('msg', '')} for field '{loc}'"
        for key in ("detail", "message", "error"):
            if isinstance(response_data.get(key), str) and response_data[key]:
                return response_data[key]
    return fallback

#
# End of inventory_sync/sync_api/utils.py
########################################################################################################################
