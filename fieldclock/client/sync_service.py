"""
Remote sync service for FieldClock.
Drains the local durable queue against the remote store in an offline-first manner.
"""

import platform
import sqlite3
import threading
import uuid
from datetime import datetime
from typing import Optional

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from fieldclock.client.geo_resolver import resolve_zone
from fieldclock.client.remote_client import (DuplicateIdentityError,
                                             RemoteError, RemoteStore)
from fieldclock.shared import db_helpers
from fieldclock.shared.logging_config import get_sync_logger
from fieldclock.shared.models import (PendingAttendanceRecord,
                                      PendingFollowUpPhoto,
                                      PendingLocationSample, ServerConfig,
                                      SyncReport, SyncState, SyncStatus)
from fieldclock.shared.utils import format_datetime

logger = get_sync_logger()


def attendance_photo_path(record: PendingAttendanceRecord) -> str:
    return f"{record.user_id}/{record.id}.jpg"


def follow_up_photo_path(follow_up: PendingFollowUpPhoto) -> str:
    return f"{follow_up.user_id}/{follow_up.session_id}_seg_{follow_up.slot}.jpg"


class RemoteSyncService(QObject):
    """
    Background sync service that handles:
    - Draining pending attendance, follow-up and location entries
    - Photo upload and zone backfill before insert
    - Duplicate-identity inserts treated as confirmation
    - Connection status monitoring and sync triggers
    """

    sync_status_changed = pyqtSignal(dict)   # Emits SyncStatus dicts
    sync_completed = pyqtSignal(dict)        # Emits SyncReport dicts after each pass
    connectivity_changed = pyqtSignal(bool)  # Emits on online/offline transitions

    def __init__(self, config: Optional[ServerConfig] = None, remote=None, parent=None):
        super().__init__(parent)

        self.config = config or self._load_config()
        self.remote = remote or RemoteStore(self.config)
        self.is_running = False
        self.is_syncing = False
        self.is_online = False
        self.last_sync = None
        self.last_error = None

        # Only one pass at a time; a trigger that finds it taken asks for a follow-up pass
        self._sync_lock = threading.Lock()
        self._sync_requested = False

        # Periodic sync while online
        self.sync_timer = QTimer(self)
        self.sync_timer.timeout.connect(self._on_sync_timer)

        # Connectivity polling
        self.connection_timer = QTimer(self)
        self.connection_timer.timeout.connect(self._trigger_background_connection_check)

    def _load_config(self) -> ServerConfig:
        """Load server configuration from settings"""
        device_id = db_helpers.get_setting('device_id', '')

        # Auto-generate device ID if not set
        if not device_id:
            hostname = platform.node() or 'unknown'
            device_id = f"fieldclock-{hostname}-{uuid.uuid4().hex[:8]}"
            db_helpers.set_setting('device_id', device_id)
            logger.info(f"Generated new device ID: {device_id}")

        return ServerConfig(
            server_url=db_helpers.get_setting('server_url', ''),
            device_id=device_id,
            api_key=db_helpers.get_setting('api_key', ''),
            photo_bucket=db_helpers.get_setting('photo_bucket', 'attendance-photos'),
            sync_interval=int(db_helpers.get_setting('sync_interval', '30')),
            timeout=int(db_helpers.get_setting('timeout', '10')),
            health_interval=int(db_helpers.get_setting('health_interval', '15')),
        )

    def update_config(self, config: ServerConfig):
        """Update server configuration"""
        old_running = self.is_running

        if old_running:
            self.stop()

        self.config = config
        if isinstance(self.remote, RemoteStore):
            self.remote.config = config
            self.remote.set_api_key(config.api_key)

        for key, value in config.to_dict().items():
            db_helpers.set_setting(key, str(value))

        logger.info(f"Server configuration updated: {config.server_url}")

        if old_running:
            self.start()

    def is_configured(self) -> bool:
        """Check if sync service is properly configured"""
        return bool(self.config.server_url and self.config.api_key)

    def start(self) -> bool:
        """Start connectivity monitoring and periodic sync"""
        if not self.is_configured():
            logger.info("Server URL or API key not configured, sync service not started")
            return False

        self.is_running = True

        # First health check drives the initial offline -> online transition
        self._trigger_background_connection_check()

        self.sync_timer.start(self.config.sync_interval * 1000)
        self.connection_timer.start(self.config.health_interval * 1000)

        logger.info("Remote sync service started")
        return True

    def stop(self):
        """Stop background sync service"""
        self.is_running = False
        self.sync_timer.stop()
        self.connection_timer.stop()
        logger.info("Remote sync service stopped")

    # Connectivity
    def check_connection(self, trigger_sync: bool = True) -> bool:
        """Check remote health and feed the result into the connectivity signal.

        Callers that run their own pass right after (the CLI) pass
        ``trigger_sync=False`` so the transition does not start a competing one.
        """
        if not self.is_configured():
            self.set_online(False)
            return False

        online = self.remote.check_health()
        self.set_online(online, trigger_sync=trigger_sync)
        return online

    def set_online(self, online: bool, trigger_sync: bool = True) -> None:
        """Connectivity input; an offline -> online transition starts a pass"""
        was_online = self.is_online
        self.is_online = bool(online)

        if self.is_online == was_online:
            return

        logger.info("Connectivity restored" if self.is_online else "Connectivity lost")
        self.connectivity_changed.emit(self.is_online)
        self._emit_status()

        if self.is_online and trigger_sync:
            self._trigger_background_sync()

    def _trigger_background_connection_check(self) -> None:
        def background_check():
            try:
                self.check_connection()
            except Exception as e:
                logger.debug(f"Background connection check error: {e}")

        threading.Thread(target=background_check, daemon=True).start()

    # Triggers
    def _on_sync_timer(self) -> None:
        if self.is_online:
            self._trigger_background_sync()

    def request_sync(self) -> bool:
        """Ask for a pass in the background (e.g. after a capture)"""
        if not self.is_online:
            logger.debug("request_sync: offline, pass deferred")
            return False
        self._trigger_background_sync()
        return True

    def _trigger_background_sync(self) -> None:
        """Run a sync pass on a background thread so timers and captures stay responsive"""
        def background_sync():
            try:
                self.sync_all()
            except Exception as e:
                logger.error(f"Background sync error: {e}")

        threading.Thread(target=background_sync, daemon=True).start()

    # Passes
    def sync_all(self, wait: bool = False) -> SyncReport:
        """Drain every pending entry once, sequentially, oldest first.

        Background triggers skip when a pass is already running. An explicit
        call with ``wait=True`` blocks until that pass ends, then runs its own.
        """
        if not self.is_online:
            logger.debug("sync_all: offline, skipping")
            return SyncReport(skipped=True)

        if not self._sync_lock.acquire(blocking=wait):
            logger.debug("sync_all: already syncing, follow-up pass requested")
            self._sync_requested = True
            return SyncReport(skipped=True)

        report = SyncReport()
        try:
            self.is_syncing = True
            self._emit_status()

            for record in db_helpers.get_pending_records():
                if self._sync_attendance_record(record):
                    report.succeeded += 1
                else:
                    report.failed += 1

            for follow_up in db_helpers.get_pending_follow_ups():
                if self._sync_follow_up(follow_up):
                    report.succeeded += 1
                else:
                    report.failed += 1

            for sample in db_helpers.get_pending_samples():
                if self._sync_location_sample(sample):
                    report.succeeded += 1
                else:
                    report.failed += 1

            self.last_sync = format_datetime(datetime.now())
            self.last_error = f"{report.failed} entries could not be synced" if report.failed else None
            logger.info(f"Sync complete: {report.succeeded} success, {report.failed} failed")
            return report

        except (sqlite3.Error, db_helpers.DatabaseException) as e:
            self.last_error = f"Error reading pending queue: {e}"
            logger.error(self.last_error)
            return report

        finally:
            self.is_syncing = False
            self._release_pass()
            self._emit_status()
            self.sync_completed.emit(report.to_dict())

    def sync_pending_record(self, record: PendingAttendanceRecord) -> bool:
        """Immediately sync one freshly queued record if online and no pass is running.

        When a pass holds the lock the record may have been queued after that
        pass listed the queue, so a follow-up pass is requested for when it ends.
        """
        if not self.is_online:
            return False

        if not self._sync_lock.acquire(blocking=False):
            logger.debug(f"Pass in progress, {record.id} left for a follow-up pass")
            self._sync_requested = True
            return False

        try:
            return self._sync_attendance_record(record)
        finally:
            self._release_pass()
            self._emit_status()

    def _release_pass(self) -> None:
        self._sync_lock.release()
        if self._sync_requested and self.is_online:
            self._sync_requested = False
            logger.debug("Starting follow-up pass for entries skipped while syncing")
            self._trigger_background_sync()

    @staticmethod
    def _advance(entity_id: str, current: SyncState, target: SyncState) -> SyncState:
        if not SyncState.is_valid_transition(current.value, target.value):
            raise ValueError(f"Invalid sync transition for {entity_id}: {current.value} -> {target.value}")
        logger.debug(f"{entity_id}: {current.value} -> {target.value}")
        return target

    def _sync_attendance_record(self, record: PendingAttendanceRecord) -> bool:
        """Upload photo, backfill zone, insert, evict. False leaves the record queued."""
        state = SyncState.QUEUED
        try:
            if not record.photo_url:
                state = self._advance(record.id, state, SyncState.UPLOADING_PHOTO)
                photo_url = self.remote.upload_photo(attendance_photo_path(record), record.photo)
                db_helpers.attach_record_photo_url(record.id, photo_url)
                record.photo_url, record.photo = photo_url, None

            state = self._advance(record.id, state, SyncState.RESOLVING_ZONE)
            coordinate = record.coordinate
            if record.zone is None and coordinate is not None:
                zone = resolve_zone(self.remote, coordinate.latitude, coordinate.longitude)
                if zone is not None:
                    db_helpers.set_record_zone(record.id, zone)
                    record.zone_code, record.zone_name = zone.code, zone.name

            state = self._advance(record.id, state, SyncState.INSERTING)
            try:
                self.remote.insert_attendance(record, record.photo_url)
            except DuplicateIdentityError:
                logger.info(f"Record {record.id} already present remotely, treating as synced")

            db_helpers.delete_pending_record(record.id)
            self._advance(record.id, state, SyncState.DONE)
            return True

        except RemoteError as e:
            logger.warning(f"Record {record.id} failed while {state.value}: {e}")
            self._advance(record.id, state, SyncState.QUEUED)
            return False
        except db_helpers.DatabaseException as e:
            logger.error(f"Queue update failed for record {record.id}: {e}")
            return False

    def _sync_follow_up(self, follow_up: PendingFollowUpPhoto) -> bool:
        state = SyncState.QUEUED
        try:
            if not follow_up.photo_url:
                state = self._advance(follow_up.id, state, SyncState.UPLOADING_PHOTO)
                photo_url = self.remote.upload_photo(follow_up_photo_path(follow_up), follow_up.photo)
                db_helpers.attach_follow_up_photo_url(follow_up.id, photo_url)
                follow_up.photo_url, follow_up.photo = photo_url, None

            state = self._advance(follow_up.id, state, SyncState.INSERTING)
            try:
                self.remote.insert_follow_up(follow_up, follow_up.photo_url)
            except DuplicateIdentityError:
                logger.info(f"Follow-up {follow_up.id} already present remotely, treating as synced")

            db_helpers.delete_pending_follow_up(follow_up.id)
            self._advance(follow_up.id, state, SyncState.DONE)
            return True

        except RemoteError as e:
            logger.warning(f"Follow-up {follow_up.id} failed while {state.value}: {e}")
            self._advance(follow_up.id, state, SyncState.QUEUED)
            return False
        except db_helpers.DatabaseException as e:
            logger.error(f"Queue update failed for follow-up {follow_up.id}: {e}")
            return False

    def _sync_location_sample(self, sample: PendingLocationSample) -> bool:
        state = SyncState.QUEUED
        try:
            state = self._advance(sample.id, state, SyncState.RESOLVING_ZONE)
            coordinate = sample.coordinate
            if sample.zone_code is None and coordinate is not None:
                zone = resolve_zone(self.remote, coordinate.latitude, coordinate.longitude)
                if zone is not None:
                    db_helpers.set_sample_zone(sample.id, zone)
                    sample.zone_code, sample.zone_name = zone.code, zone.name

            state = self._advance(sample.id, state, SyncState.INSERTING)
            try:
                self.remote.insert_location_sample(sample)
            except DuplicateIdentityError:
                logger.info(f"Sample {sample.id} already present remotely, treating as synced")

            db_helpers.delete_pending_sample(sample.id)
            self._advance(sample.id, state, SyncState.DONE)
            return True

        except RemoteError as e:
            logger.warning(f"Sample {sample.id} failed while {state.value}: {e}")
            self._advance(sample.id, state, SyncState.QUEUED)
            return False
        except db_helpers.DatabaseException as e:
            logger.error(f"Queue update failed for sample {sample.id}: {e}")
            return False

    def write_location_sample(self, sample: PendingLocationSample) -> bool:
        """Write a sample straight to the remote, queueing it on any failure.

        Returns True when the remote confirmed it, False when it was queued.
        Raises QueueWriteError if the fallback queue write fails.
        """
        if self.is_online:
            try:
                self.remote.insert_location_sample(sample)
                return True
            except DuplicateIdentityError:
                return True
            except RemoteError as e:
                logger.warning(f"Direct write of sample {sample.id} failed, queueing: {e}")

        db_helpers.save_pending_sample(sample)
        self._emit_status()
        return False

    # Status
    def get_sync_status(self) -> SyncStatus:
        try:
            counts = db_helpers.get_pending_counts()
        except sqlite3.Error as e:
            logger.debug(f"Could not count pending entries: {e}")
            counts = {'attendance': 0, 'samples': 0, 'follow_ups': 0}

        return SyncStatus(
            is_online=self.is_online,
            is_syncing=self.is_syncing,
            last_sync=self.last_sync,
            pending_count=sum(counts.values()),
            pending_attendance=counts['attendance'],
            pending_samples=counts['samples'],
            pending_follow_ups=counts['follow_ups'],
            last_error=self.last_error,
        )

    def _emit_status(self) -> None:
        self.sync_status_changed.emit(self.get_sync_status().to_dict())


# Global sync service instance
_sync_service = None


def get_sync_service() -> RemoteSyncService:
    """Get the global sync service instance"""
    global _sync_service
    if _sync_service is None:
        _sync_service = RemoteSyncService()
    return _sync_service
