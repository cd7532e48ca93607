"""
Shared data models for the FieldClock application.
Used by the durable queue, the sync service and the capture paths.
"""

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class EventKind(Enum):
    """Attendance event kinds"""
    CLOCK_IN = "clock-in"
    CLOCK_OUT = "clock-out"


class SampleSource(Enum):
    """Why a location sample was captured"""
    HOURLY = "hourly"
    SESSION_START = "session-start"
    SESSION_END = "session-end"
    MANUAL = "manual"


class SyncState(Enum):
    """Per-record sync states for offline-first operation"""
    QUEUED = "queued"
    UPLOADING_PHOTO = "uploading-photo"
    RESOLVING_ZONE = "resolving-zone"
    INSERTING = "inserting"
    DONE = "done"

    @classmethod
    def is_valid_transition(cls, from_state: str, to_state: str) -> bool:
        """Check if state transition is valid"""
        if from_state == to_state:
            return True

        # Valid transitions:
        # QUEUED -> UPLOADING_PHOTO / RESOLVING_ZONE / INSERTING (photo-less kinds skip ahead)
        # UPLOADING_PHOTO -> RESOLVING_ZONE (follow-ups carry no coordinate and go straight to INSERTING)
        # RESOLVING_ZONE -> INSERTING
        # INSERTING -> DONE
        # Any non-terminal state -> QUEUED (failure, retried next pass)

        valid_transitions = {
            cls.QUEUED.value: [cls.UPLOADING_PHOTO.value, cls.RESOLVING_ZONE.value, cls.INSERTING.value],
            cls.UPLOADING_PHOTO.value: [cls.RESOLVING_ZONE.value, cls.INSERTING.value, cls.QUEUED.value],
            cls.RESOLVING_ZONE.value: [cls.INSERTING.value, cls.QUEUED.value],
            cls.INSERTING.value: [cls.DONE.value, cls.QUEUED.value],
            cls.DONE.value: [],
        }

        return to_state in valid_transitions.get(from_state, [])


def new_record_id() -> str:
    """Globally unique identity for a pending entity"""
    return str(uuid.uuid4())


@dataclass
class Coordinate:
    """Device position as reported by the position provider"""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ZoneResult:
    """Named zone (hacienda code + suerte name) enclosing a coordinate"""
    code: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code, 'name': self.name}


@dataclass
class PendingAttendanceRecord:
    """Clock-in/out capture waiting to be confirmed by the remote store"""
    user_id: str = ""
    date: str = ""  # YYYY-MM-DD
    kind: str = EventKind.CLOCK_IN.value
    timestamp: str = ""  # ISO-8601 UTC
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    outside_zone: bool = False
    photo: Optional[bytes] = None
    photo_url: Optional[str] = None
    zone_code: Optional[str] = None
    zone_name: Optional[str] = None
    is_inconsistent: bool = False
    inconsistency_note: Optional[str] = None
    created_at: str = ""
    id: str = field(default_factory=new_record_id)

    def __post_init__(self):
        """Enforce the one-photo and both-or-neither zone invariants"""
        if self.photo is None and not self.photo_url:
            raise ValueError("Attendance record requires a photo payload or an uploaded photo reference")
        if (self.zone_code is None) != (self.zone_name is None):
            raise ValueError("Zone code and zone name must be both set or both empty")

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinate(self.latitude, self.longitude, self.accuracy)

    @property
    def zone(self) -> Optional[ZoneResult]:
        if self.zone_code is None:
            return None
        return ZoneResult(self.zone_code, self.zone_name)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PendingLocationSample:
    """Position sample taken while a clock-in session is active"""
    user_id: str = ""
    date: str = ""
    session_id: str = ""
    timestamp: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    outside_zone: bool = False
    zone_code: Optional[str] = None
    zone_name: Optional[str] = None
    source: str = SampleSource.HOURLY.value
    created_at: str = ""
    id: str = field(default_factory=new_record_id)

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinate(self.latitude, self.longitude, self.accuracy)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PendingFollowUpPhoto:
    """Evidence photo (slot 1 or 2) attached to an open clock-in session"""
    user_id: str = ""
    session_id: str = ""
    slot: int = 1
    timestamp: str = ""
    photo: Optional[bytes] = None
    photo_url: Optional[str] = None
    created_at: str = ""
    id: str = field(default_factory=new_record_id)

    def __post_init__(self):
        if self.slot not in (1, 2):
            raise ValueError(f"Evidence slot must be 1 or 2, got {self.slot}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AttendanceEntry:
    """One row of the merged attendance view (remote or local pending)"""
    id: str
    user_id: str
    date: str
    kind: str
    timestamp: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    outside_zone: bool = False
    photo_url: Optional[str] = None
    zone_code: Optional[str] = None
    zone_name: Optional[str] = None
    is_inconsistent: bool = False
    inconsistency_note: Optional[str] = None
    pending: bool = False

    @classmethod
    def from_pending(cls, record: PendingAttendanceRecord) -> 'AttendanceEntry':
        """Project a queued record into the view (photo payload stays local)"""
        return cls(
            id=record.id,
            user_id=record.user_id,
            date=record.date,
            kind=record.kind,
            timestamp=record.timestamp,
            latitude=record.latitude,
            longitude=record.longitude,
            accuracy=record.accuracy,
            outside_zone=record.outside_zone,
            photo_url=record.photo_url,
            zone_code=record.zone_code,
            zone_name=record.zone_name,
            is_inconsistent=record.is_inconsistent,
            inconsistency_note=record.inconsistency_note,
            pending=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MergedAttendanceView:
    """Date-scoped union of remote and pending records, newest first"""
    user_id: str
    date: str
    entries: List[AttendanceEntry] = field(default_factory=list)

    @property
    def last_entry(self) -> Optional[AttendanceEntry]:
        return self.entries[0] if self.entries else None

    @property
    def pending_count(self) -> int:
        return sum(1 for entry in self.entries if entry.pending)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncStatus:
    """Status information for sync operations"""
    is_online: bool = False
    is_syncing: bool = False
    last_sync: Optional[str] = None  # ISO timestamp
    pending_count: int = 0  # Total pending items (all kinds)
    pending_attendance: int = 0
    pending_samples: int = 0
    pending_follow_ups: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncReport:
    """Aggregate outcome of one sync pass"""
    succeeded: int = 0
    failed: int = 0
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.skipped and self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CaptureResult:
    """Outcome reported to the caller of a capture operation"""
    success: bool
    record_id: Optional[str] = None
    synced: bool = False
    zone: Optional[ZoneResult] = None
    coordinate: Optional[Coordinate] = None
    hours_worked: Optional[float] = None
    is_inconsistent: bool = False
    note: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Configuration models
@dataclass
class ServerConfig:
    """Remote store configuration with validation"""
    server_url: str = ""
    device_id: str = ""
    api_key: str = ""
    photo_bucket: str = "attendance-photos"
    sync_interval: int = 30  # seconds
    timeout: int = 10  # seconds
    health_interval: int = 15  # seconds

    def __post_init__(self) -> None:
        """Validate configuration after initialization"""
        # Validate server URL format if provided
        if self.server_url:
            if not self.server_url.startswith(('http://', 'https://')):
                raise ValueError("Invalid server URL: must start with http:// or https://")
            self.server_url = self.server_url.rstrip('/')

        # Validate sync interval range
        if not (5 <= self.sync_interval <= 3600):
            raise ValueError(f"Sync interval must be between 5 and 3600 seconds, got {self.sync_interval}")

        # Validate timeout range
        if not (1 <= self.timeout <= 120):
            raise ValueError(f"Timeout must be between 1 and 120 seconds, got {self.timeout}")

        if not (1 <= self.health_interval <= 3600):
            raise ValueError(f"Health interval must be between 1 and 3600 seconds, got {self.health_interval}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for persistence"""
        return asdict(self)
