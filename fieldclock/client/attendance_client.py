"""
Capture layer for FieldClock.
Records attendance events and follow-up photos, queue first, sync when possible.
"""

from typing import Optional

from PyQt6.QtCore import QObject, pyqtSignal

from fieldclock.client.location_tracking import read_position
from fieldclock.client.merged_view import build_today_view
from fieldclock.client.sequence_validator import (calculate_hours_worked,
                                                  check_consistency)
from fieldclock.client.sync_service import get_sync_service
from fieldclock.shared import db_helpers
from fieldclock.shared.logging_config import get_client_logger
from fieldclock.shared.models import (AttendanceEntry, CaptureResult,
                                      EventKind, MergedAttendanceView,
                                      PendingAttendanceRecord,
                                      PendingFollowUpPhoto)
from fieldclock.shared.utils import format_datetime, local_date_of, utc_now

logger = get_client_logger()


class AttendanceClient(QObject):
    """
    Client abstraction layer that handles:
    - Attendance and follow-up capture
    - Durable queueing before any remote call
    - Immediate sync when online
    - The merged "today" view
    """

    attendance_recorded = pyqtSignal(dict)  # Emits CaptureResult dicts

    def __init__(self, sync_service=None, position_provider=None, sampler=None, parent=None):
        super().__init__(parent)

        db_helpers.init_database()

        self.sync_service = sync_service or get_sync_service()
        self.position_provider = position_provider
        self.sampler = sampler

    def get_today_view(self, user_id: str, day: Optional[str] = None) -> MergedAttendanceView:
        """Merged remote + pending records for the day, newest first"""
        return build_today_view(user_id, self.sync_service.remote, self.sync_service.is_online, day)

    def get_pending_count(self) -> int:
        """Get count of entries pending sync across all users"""
        return db_helpers.get_pending_count()

    def mark_attendance(self, user_id: str, kind: str, photo: bytes) -> CaptureResult:
        """
        Record a clock-in or clock-out with exactly one photo.

        Success means the record is durably queued (and possibly already
        synced). A record that cannot be queued is reported as a failure.
        """
        if not user_id:
            return CaptureResult(success=False, error="User not authenticated")

        kind = EventKind(kind).value

        if not photo:
            return CaptureResult(success=False, error="A photo is required")

        coordinate = read_position(self.position_provider)

        # Consistency is judged on the merged view, never on cached state
        view = self.get_today_view(user_id)
        is_inconsistent, note = check_consistency(kind, view.entries)

        now = utc_now()
        record = PendingAttendanceRecord(
            user_id=user_id,
            date=local_date_of(now),
            kind=kind,
            timestamp=format_datetime(now),
            latitude=coordinate.latitude if coordinate else None,
            longitude=coordinate.longitude if coordinate else None,
            accuracy=coordinate.accuracy if coordinate else None,
            outside_zone=False,
            photo=photo,
            is_inconsistent=is_inconsistent,
            inconsistency_note=note,
            created_at=format_datetime(now),
        )

        try:
            db_helpers.save_pending_record(record)
        except db_helpers.QueueWriteError as e:
            logger.error(f"Could not queue {kind} for {user_id}: {e}")
            return CaptureResult(success=False, error=f"Could not save attendance locally: {e}")

        synced = self.sync_service.sync_pending_record(record)
        if is_inconsistent:
            logger.warning(f"{kind} {record.id} for {user_id} flagged: {note}")
        logger.info(f"{kind} {record.id} for {user_id} {'synced' if synced else 'queued'}")

        hours_worked = None
        if kind == EventKind.CLOCK_OUT.value:
            hours_worked = calculate_hours_worked([AttendanceEntry.from_pending(record)] + view.entries)

        self._update_tracking(user_id, kind, record.id)

        result = CaptureResult(
            success=True,
            record_id=record.id,
            synced=synced,
            zone=record.zone,
            coordinate=coordinate,
            hours_worked=hours_worked,
            is_inconsistent=is_inconsistent,
            note=note,
        )
        self.attendance_recorded.emit(result.to_dict())
        return result

    def _update_tracking(self, user_id: str, kind: str, record_id: str) -> None:
        if self.sampler is None:
            return
        if kind == EventKind.CLOCK_IN.value:
            self.sampler.start(user_id, record_id)
        elif self.sampler.is_tracking:
            self.sampler.sample_session_end()
            self.sampler.stop()

    def mark_follow_up(self, user_id: str, session_id: str, slot: int, photo: bytes) -> CaptureResult:
        """Queue evidence photo ``slot`` (1 or 2) for an open session"""
        if not user_id:
            return CaptureResult(success=False, error="User not authenticated")
        if not photo:
            return CaptureResult(success=False, error="A photo is required")

        now = format_datetime(utc_now())
        follow_up = PendingFollowUpPhoto(
            user_id=user_id,
            session_id=session_id,
            slot=slot,
            timestamp=now,
            photo=photo,
            created_at=now,
        )

        try:
            db_helpers.save_pending_follow_up(follow_up)
        except db_helpers.QueueWriteError as e:
            logger.error(f"Could not queue follow-up {slot} for session {session_id}: {e}")
            return CaptureResult(success=False, error=f"Could not save follow-up locally: {e}")

        self.sync_service.request_sync()
        return CaptureResult(success=True, record_id=follow_up.id)


# Global client instance
_client = None


def get_client() -> AttendanceClient:
    """Get the singleton client instance"""
    global _client
    if _client is None:
        _client = AttendanceClient()
    return _client
