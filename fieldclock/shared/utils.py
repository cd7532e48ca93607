"""
Shared utility functions for FieldClock application.
"""

import re
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from platformdirs import user_data_dir

APP_NAME = "FieldClock"

# Seconds fraction of any length; Postgres drops trailing zeros
_FRACTION = re.compile(r"(T\d{2}:\d{2}:\d{2})\.(\d+)")


def get_data_path(relative_path: str) -> Path:
    """Get absolute path to writable data files (queue database, logs).

    Resolves to the per-user data directory returned by
    ``platformdirs.user_data_dir`` so the pending queue survives reinstalls.
    """
    base_path = Path(user_data_dir(APP_NAME))
    base_path.mkdir(parents=True, exist_ok=True)
    return base_path / relative_path


def to_float_optional(value) -> Optional[float]:
    """Convert value to float, return None if invalid"""
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_datetime(dt: datetime) -> str:
    """Format datetime as ISO-8601 in UTC (the wire and queue format)"""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.astimezone(timezone.utc).isoformat()


def parse_datetime(dt_str: str) -> Optional[datetime]:
    """Parse an ISO-8601 string, return None if invalid.

    Naive values are taken as UTC so remote and local timestamps compare.
    The seconds fraction is padded or cut to microseconds, which
    ``fromisoformat`` requires before Python 3.11.
    """
    if not dt_str:
        return None
    normalized = _FRACTION.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}",
                               dt_str.replace('Z', '+00:00'))
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def local_date_of(dt: datetime) -> str:
    """Calendar date (device local time) an event belongs to"""
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.date().isoformat()


def today_iso() -> str:
    return date.today().isoformat()


def next_hour_boundary(now: datetime) -> datetime:
    """Top of the next wall-clock hour after ``now``.

    Pure function of the current time so a rescheduled timer never drifts.
    """
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


def millis_until(target: datetime, now: datetime) -> int:
    """Whole milliseconds from now until target, never negative"""
    return max(0, int((target - now).total_seconds() * 1000))


def sort_key_timestamp(dt_str: str) -> datetime:
    """Sort key for ISO timestamps; unparsable values sort oldest"""
    return parse_datetime(dt_str) or datetime.min.replace(tzinfo=timezone.utc)
