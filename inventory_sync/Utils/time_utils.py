# time_utils.py
# Description: ISO-8601 UTC timestamp helpers
#
# Imports
from datetime import datetime, timezone
from typing import Optional, Union
#
########################################################################################################################
#
# Functions:

def utc_now_iso() -> str:
    """Current UTC time, e.g. "2023-10-27T10:30:00.123Z"."""
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(value: datetime, timespec: str = "milliseconds") -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec=timespec).replace('+00:00', 'Z')


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parses an ISO-8601 string (or passes through a datetime) into an aware UTC datetime.

    Naive values are taken to be UTC. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: Union[str, datetime, None]) -> Optional[str]:
    """Canonical UTC form of `value`. Sub-millisecond precision is kept so stored values compare equal."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return format_timestamp(parsed, "milliseconds" if parsed.microsecond % 1000 == 0 else "microseconds")

#
# End of time_utils.py
########################################################################################################################
