"""
Schedule Time Conversion

The controller stores schedule rule times as UTC "HH:MM"; the client keeps
them as local wall clock. Only hour and minute matter, but the offset is
resolved against today's date so DST is applied. A daily time that falls on
the other side of a DST change from today can be off by one hour.
"""

import re
from datetime import datetime, time, timezone, tzinfo
from typing import Optional

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(value: str) -> time:
    """Parse "HH:MM" into a time.

    Raises:
        ValueError: If the text is not a valid 24h time
    """
    match = _HHMM.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time (expected HH:MM): {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time (expected HH:MM): {value!r}")
    return time(hours, minutes)


def _to_zone(dt: datetime, tz: Optional[tzinfo]) -> datetime:
    # astimezone() without an argument uses the host's zone
    return dt.astimezone(tz) if tz is not None else dt.astimezone()


def local_to_utc(value: str, tz: Optional[tzinfo] = None, now: Optional[datetime] = None) -> str:
    """Convert a local wall clock "HH:MM" to the controller's UTC "HH:MM".

    Args:
        value: Local time
        tz: Local zone (None = host zone)
        now: Instant whose date resolves the offset (default: now)
    """
    wall = parse_hhmm(value)
    today = _to_zone(now or datetime.now(timezone.utc), tz).date()
    if tz is not None:
        local = datetime.combine(today, wall, tzinfo=tz)
    else:
        local = datetime.combine(today, wall).astimezone()
    return local.astimezone(timezone.utc).strftime("%H:%M")


def utc_to_local(value: str, tz: Optional[tzinfo] = None, now: Optional[datetime] = None) -> str:
    """Convert the controller's UTC "HH:MM" to local wall clock "HH:MM"."""
    wall = parse_hhmm(value)
    today = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()
    utc = datetime.combine(today, wall, tzinfo=timezone.utc)
    return _to_zone(utc, tz).strftime("%H:%M")


def local_utc_offset_minutes(tz: Optional[tzinfo] = None, now: Optional[datetime] = None) -> int:
    """Current UTC offset of the local zone, in minutes east of UTC."""
    local = _to_zone(now or datetime.now(timezone.utc), tz)
    return int(local.utcoffset().total_seconds() // 60)
