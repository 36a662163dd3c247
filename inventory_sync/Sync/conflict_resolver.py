# conflict_resolver.py
# Description: Decides whether a pulled remote record replaces the local copy
#
# Imports
from dataclasses import dataclass
from typing import Any, Union
#
# Local Imports
from inventory_sync.Constants import ConflictResolution
from inventory_sync.Utils.time_utils import parse_timestamp
#
#######################################################################################################################
#
# Functions:

@dataclass(frozen=True)
class Resolution:
    use_remote: bool
    reason: str = ""


def _updated_at(record: Any) -> Any:
    if isinstance(record, dict) or hasattr(record, "get"):
        return record.get("updated_at")
    return getattr(record, "updated_at", None)


def resolve(policy: Union[str, ConflictResolution], local: Any, remote: Any) -> Resolution:
    """
    Resolves a collision between a local record and a pulled remote record.

    - server_wins: the remote always wins.
    - client_wins: the local record always wins.
    - newest_wins: the remote wins only if its `updated_at` is strictly later
      than the local one. Ties, and a remote without a usable timestamp, keep
      the local record.

    `local` and `remote` are mappings (or objects) exposing `updated_at` as an
    ISO-8601 string or datetime. No side effects.
    """
    policy = ConflictResolution(policy)
    if policy is ConflictResolution.SERVER_WINS:
        return Resolution(True, "server_wins")
    if policy is ConflictResolution.CLIENT_WINS:
        return Resolution(False, "client_wins")

    remote_ts = parse_timestamp(_updated_at(remote))
    local_ts = parse_timestamp(_updated_at(local))
    if remote_ts is None:
        return Resolution(False, "remote updated_at missing")
    if local_ts is None:
        return Resolution(True, "local updated_at missing")
    if remote_ts > local_ts:
        return Resolution(True, "remote is newer")
    return Resolution(False, "local is newer or equal")

#
# End of conflict_resolver.py
########################################################################################################################
