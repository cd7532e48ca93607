"""
Hourly location sampling for an active clock-in session.
"""

import threading
from datetime import datetime
from typing import Callable, Optional

from PyQt6.QtCore import QObject, Qt, QTimer, pyqtSignal

from fieldclock.client.geo_resolver import resolve_zone
from fieldclock.shared.db_helpers import QueueWriteError
from fieldclock.shared.logging_config import get_tracking_logger
from fieldclock.shared.models import (Coordinate, PendingLocationSample,
                                      SampleSource)
from fieldclock.shared.utils import (format_datetime, local_date_of,
                                     millis_until, next_hour_boundary)

logger = get_tracking_logger()


def read_position(position_provider: Optional[Callable[[], Optional[Coordinate]]]) -> Optional[Coordinate]:
    """Best-effort device position; any provider failure means no position"""
    if position_provider is None:
        return None
    try:
        return position_provider()
    except Exception as e:
        logger.warning(f"Could not get GPS position: {e}")
        return None


class LocationSampler(QObject):
    """
    Captures one position sample per wall-clock hour while a session is tracked.

    The next tick is always the top of the next hour computed from the clock
    at reschedule time, so samples land on hour boundaries without drift.
    Timer-driven samples are captured on a background thread so the zone
    lookup and remote write never stall the event loop.
    """

    sample_captured = pyqtSignal(dict)

    def __init__(self, sync_service, position_provider=None, clock: Optional[Callable[[], datetime]] = None,
                 parent=None):
        super().__init__(parent)
        self.sync_service = sync_service
        self.position_provider = position_provider
        self._clock = clock or datetime.now

        self.user_id: Optional[str] = None
        self.session_id: Optional[str] = None
        self.next_fire_at: Optional[datetime] = None

        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        # Coarse timers may fire up to 5% early, minutes on an hourly interval
        self._timer.setTimerType(Qt.TimerType.PreciseTimer)
        self._timer.timeout.connect(self._on_tick)

    @property
    def is_tracking(self) -> bool:
        return bool(self.user_id and self.session_id)

    def start(self, user_id: str, session_id: str) -> None:
        """Begin tracking a session: one immediate manual sample, then hourly"""
        self.user_id = user_id
        self.session_id = session_id
        logger.info(f"Tracking session {session_id} for user {user_id}")
        self._push_in_background(SampleSource.MANUAL)
        self._schedule_next()

    def resume(self) -> None:
        """App regained the foreground: sample now and re-align the timer"""
        if not self.is_tracking:
            return
        self._push_in_background(SampleSource.MANUAL)
        self._schedule_next()

    def stop(self) -> None:
        """Cancel the pending tick; nothing fires after this"""
        self._timer.stop()
        if self.session_id:
            logger.info(f"Stopped tracking session {self.session_id}")
        self.user_id = None
        self.session_id = None
        self.next_fire_at = None

    def sample_session_start(self) -> Optional[PendingLocationSample]:
        return self.push_sample(SampleSource.SESSION_START)

    def sample_session_end(self) -> Optional[PendingLocationSample]:
        return self.push_sample(SampleSource.SESSION_END)

    def _schedule_next(self) -> None:
        self._timer.stop()
        if not self.is_tracking:
            return

        now = self._clock()
        self.next_fire_at = next_hour_boundary(now)
        self._timer.start(millis_until(self.next_fire_at, now))
        logger.debug(f"Next hourly sample at {self.next_fire_at.isoformat()}")

    def _on_tick(self) -> None:
        if not self.is_tracking:
            return

        if self.next_fire_at is not None and self._clock() < self.next_fire_at:
            # Fired ahead of the boundary: wait for it instead of sampling twice
            logger.debug(f"Early tick, still waiting for {self.next_fire_at.isoformat()}")
            self._schedule_next()
            return

        self._push_in_background(SampleSource.HOURLY)
        self._schedule_next()

    def _push_in_background(self, source: SampleSource) -> Optional[threading.Thread]:
        """Capture a sample for the current session on a daemon thread"""
        if not self.is_tracking:
            return None

        user_id, session_id = self.user_id, self.session_id

        def background_sample():
            try:
                self._capture(source, user_id, session_id)
            except Exception as e:
                logger.error(f"Background {source.value} sample error: {e}")

        worker = threading.Thread(target=background_sample, daemon=True)
        worker.start()
        return worker

    def push_sample(self, source: SampleSource = SampleSource.HOURLY) -> Optional[PendingLocationSample]:
        """Capture and write one sample now; None if not tracking or it could not be stored"""
        if not self.is_tracking:
            return None
        return self._capture(source, self.user_id, self.session_id)

    def _capture(self, source: SampleSource, user_id: str, session_id: str) -> Optional[PendingLocationSample]:
        coordinate = read_position(self.position_provider)
        now = self._clock()

        sample = PendingLocationSample(
            user_id=user_id,
            date=local_date_of(now),
            session_id=session_id,
            timestamp=format_datetime(now),
            latitude=coordinate.latitude if coordinate else None,
            longitude=coordinate.longitude if coordinate else None,
            accuracy=coordinate.accuracy if coordinate else None,
            source=source.value,
            created_at=format_datetime(now),
        )

        if coordinate is not None and self.sync_service.is_online:
            zone = resolve_zone(self.sync_service.remote, coordinate.latitude, coordinate.longitude)
            if zone is not None:
                sample.zone_code, sample.zone_name = zone.code, zone.name
            # Online with a fix: no enclosing zone is read as outside
            sample.outside_zone = zone is None

        try:
            written = self.sync_service.write_location_sample(sample)
        except QueueWriteError as e:
            logger.error(f"Could not store {source.value} sample for session {session_id}: {e}")
            return None

        logger.info(f"{source.value} sample {sample.id} {'written' if written else 'queued'}")
        self.sample_captured.emit(sample.to_dict())
        return sample
