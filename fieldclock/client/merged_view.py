"""
Today's attendance view: remote rows merged with not-yet-synced local records.
"""

from typing import Dict, Iterable, List, Optional

from fieldclock.shared import db_helpers
from fieldclock.shared.logging_config import get_client_logger
from fieldclock.shared.models import AttendanceEntry, MergedAttendanceView
from fieldclock.shared.utils import sort_key_timestamp, today_iso

logger = get_client_logger()


def merge_entries(remote_entries: Iterable[AttendanceEntry],
                  pending_entries: Iterable[AttendanceEntry]) -> List[AttendanceEntry]:
    """Union by identity, remote copy wins, newest first"""
    by_id: Dict[str, AttendanceEntry] = {}
    for entry in pending_entries:
        by_id[entry.id] = entry
    for entry in remote_entries:
        by_id[entry.id] = entry

    return sorted(by_id.values(), key=lambda e: sort_key_timestamp(e.timestamp), reverse=True)


def build_today_view(user_id: str, remote, is_online: bool, day: Optional[str] = None) -> MergedAttendanceView:
    """Build the merged view for user and day (defaults to today).

    The remote is only read when online; a failed read degrades to the local
    pending entries.
    """
    day = day or today_iso()

    pending = [
        AttendanceEntry.from_pending(record)
        for record in db_helpers.get_pending_records_by_user_and_date(user_id, day)
    ]

    remote_entries: List[AttendanceEntry] = []
    if is_online and remote is not None:
        try:
            remote_entries = remote.query_attendance(user_id, day)
        except Exception as e:
            logger.warning(f"Could not read remote attendance for {user_id} on {day}: {e}")

    return MergedAttendanceView(
        user_id=user_id,
        date=day,
        entries=merge_entries(remote_entries, pending),
    )
