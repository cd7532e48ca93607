"""
Chronological consistency rules for attendance events.
"""

from typing import Optional, Sequence, Tuple

from fieldclock.shared.models import AttendanceEntry, EventKind
from fieldclock.shared.utils import parse_datetime

CLOCK_IN_WITHOUT_CLOCK_OUT = "Clock-in recorded without a prior clock-out"
CLOCK_OUT_WITHOUT_CLOCK_IN = "Clock-out recorded without a prior clock-in"


def check_consistency(kind: str, todays_records: Sequence[AttendanceEntry]) -> Tuple[bool, Optional[str]]:
    """Judge a new event against today's records (newest first).

    The result only flags the capture for review; it never blocks the write.
    """
    last = todays_records[0] if todays_records else None

    if kind == EventKind.CLOCK_IN.value and last is not None and last.kind == EventKind.CLOCK_IN.value:
        return True, CLOCK_IN_WITHOUT_CLOCK_OUT

    if kind == EventKind.CLOCK_OUT.value and (last is None or last.kind == EventKind.CLOCK_OUT.value):
        return True, CLOCK_OUT_WITHOUT_CLOCK_IN

    return False, None


def calculate_hours_worked(todays_records: Sequence[AttendanceEntry]) -> Optional[float]:
    """Hours from the day's first clock-in to its last clock-out, one decimal"""
    clock_ins = [r for r in todays_records if r.kind == EventKind.CLOCK_IN.value]
    clock_outs = [r for r in todays_records if r.kind == EventKind.CLOCK_OUT.value]
    if not clock_ins or not clock_outs:
        return None

    # Records are newest first
    start = parse_datetime(clock_ins[-1].timestamp)
    end = parse_datetime(clock_outs[0].timestamp)
    if start is None or end is None:
        return None

    return round((end - start).total_seconds() / 3600, 1)
