# inventory_sync/sync_api/schemas.py
# Description: Pydantic models for remote payloads and push/pull results
#
# Imports
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
#
# 3rd-party Libraries
from pydantic import BaseModel, ConfigDict, Field, field_validator
#
#######################################################################################################################
#
# Functions:

class FailureKind(str, Enum):
    REMOTE_REJECTED = "remote_rejected"
    NETWORK_UNREACHABLE = "network_unreachable"


class RemoteRecord(BaseModel):
    """
    One entity payload returned by `GET /<entity>?since=...`.

    Only the identity and versioning fields are typed; the entity's own fields
    are kept as extra attributes and show up in `model_dump()`.
    """
    model_config = ConfigDict(extra="allow")

    id: str
    version: int = 1
    updated_at: datetime

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and not value.strip():
            raise ValueError("id must not be empty")
        return value

    @field_validator("version", mode="before")
    @classmethod
    def _default_version(cls, value: Any) -> Any:
        return 1 if value is None else value


class PushResult(BaseModel):
    ok: bool
    remote_id: Optional[str] = None
    message: Optional[str] = None
    failure: Optional[FailureKind] = None

    @classmethod
    def success(cls, remote_id: Optional[str]) -> "PushResult":
        return cls(ok=True, remote_id=remote_id)

    @classmethod
    def rejected(cls, message: str) -> "PushResult":
        return cls(ok=False, message=message, failure=FailureKind.REMOTE_REJECTED)

    @classmethod
    def unreachable(cls, message: str) -> "PushResult":
        return cls(ok=False, message=message, failure=FailureKind.NETWORK_UNREACHABLE)


class PullResult(BaseModel):
    ok: bool
    records: List[Any] = Field(default_factory=list)
    message: Optional[str] = None
    failure: Optional[FailureKind] = None

    @classmethod
    def success(cls, records: List[Any]) -> "PullResult":
        return cls(ok=True, records=records)

    @classmethod
    def rejected(cls, message: str) -> "PullResult":
        return cls(ok=False, message=message, failure=FailureKind.REMOTE_REJECTED)

    @classmethod
    def unreachable(cls, message: str) -> "PullResult":
        return cls(ok=False, message=message, failure=FailureKind.NETWORK_UNREACHABLE)

#
# End of inventory_sync/sync_api/schemas.py
########################################################################################################################
