"""Timezone offset helpers shared by every provider.

All offsets leave this module as fractional hours from UTC.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_UTC_OFFSET_RE = re.compile(r"^\s*([+-])(\d{2}):?(\d{2})\s*$")


def calculate_timezone_offset(tz_name: str | None, at: datetime | None = None) -> float | None:
    """Current UTC offset of an IANA zone in hours, honouring its present DST state.

    Returns None for empty or unknown zone ids.
    """
    if not tz_name:
        return None

    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # Directory names such as "America" surface as IsADirectoryError.
        return None

    moment = at or datetime.now(timezone.utc)
    offset = moment.astimezone(zone).utcoffset()
    if offset is None:
        return None
    return offset.total_seconds() / 3600


def parse_utc_offset(value: Any) -> float | None:
    """Parse "+0530" / "-05:00" style offsets into hours (5.5, -5.0)."""
    if not isinstance(value, str):
        return None

    match = _UTC_OFFSET_RE.match(value)
    if match is None:
        return None

    sign = 1 if match.group(1) == "+" else -1
    return sign * (int(match.group(2)) + int(match.group(3)) / 60)


def seconds_to_hours(value: Any) -> float | None:
    """Convert an offset given in seconds (e.g. -25200) to hours (-7.0)."""
    number = to_float(value)
    if number is None:
        return None
    return number / 3600


def to_float(value: Any) -> float | None:
    """Lenient float coercion: numbers and numeric strings pass, everything else is None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
