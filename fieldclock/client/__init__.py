"""Client package for FieldClock.

Provides the capture layer, location sampling and the sync service.
"""
from .attendance_client import AttendanceClient, get_client
from .location_tracking import LocationSampler
from .sync_service import RemoteSyncService, get_sync_service

__all__ = ["AttendanceClient", "get_client", "LocationSampler", "RemoteSyncService", "get_sync_service"]
