"""
Local durable queue for FieldClock.
SQLite store of captures not yet confirmed by the remote store, plus settings.
"""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from fieldclock.shared.logging_config import get_queue_logger
from fieldclock.shared.models import (PendingAttendanceRecord,
                                      PendingFollowUpPhoto,
                                      PendingLocationSample, ZoneResult)
from fieldclock.shared.utils import format_datetime, get_data_path

logger = get_queue_logger()


class DatabaseException(Exception):
    """Custom exception for database operations"""
    pass


class QueueWriteError(DatabaseException):
    """A pending capture could not be durably stored"""
    pass


SCHEMA_VERSION = 2

# Each entry upgrades the schema from (index) to (index + 1). Statements are
# idempotent so a half-applied upgrade can be re-run.
MIGRATIONS = [
    [
        """
        CREATE TABLE IF NOT EXISTS pending_records (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            date TEXT NOT NULL,
            kind TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            latitude REAL,
            longitude REAL,
            accuracy REAL,
            outside_zone INTEGER NOT NULL DEFAULT 0,
            photo BLOB,
            photo_url TEXT,
            is_inconsistent INTEGER NOT NULL DEFAULT 0,
            inconsistency_note TEXT,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_records_user ON pending_records (user_id)",
        "CREATE INDEX IF NOT EXISTS idx_records_date ON pending_records (date)",
        "CREATE INDEX IF NOT EXISTS idx_records_timestamp ON pending_records (timestamp)",
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT
        )
        """,
    ],
    [
        # v2: zone columns, composite user+date lookups, samples and follow-ups
        "ALTER TABLE pending_records ADD COLUMN zone_code TEXT",
        "ALTER TABLE pending_records ADD COLUMN zone_name TEXT",
        "CREATE INDEX IF NOT EXISTS idx_records_user_date ON pending_records (user_id, date)",
        """
        CREATE TABLE IF NOT EXISTS pending_samples (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            date TEXT NOT NULL,
            session_id TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            latitude REAL,
            longitude REAL,
            accuracy REAL,
            outside_zone INTEGER NOT NULL DEFAULT 0,
            zone_code TEXT,
            zone_name TEXT,
            source TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_samples_user_date ON pending_samples (user_id, date)",
        """
        CREATE TABLE IF NOT EXISTS pending_follow_ups (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            session_id TEXT NOT NULL,
            slot INTEGER NOT NULL,
            timestamp TEXT NOT NULL,
            photo BLOB,
            photo_url TEXT,
            created_at TEXT NOT NULL
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_follow_ups_slot
        ON pending_follow_ups (user_id, session_id, slot)
        """,
    ],
]


def get_db_path() -> Path:
    """Get the queue database file path in the per-user data directory"""
    return get_data_path('fieldclock.db')


def get_connection() -> sqlite3.Connection:
    """Get a database connection with row factory"""
    conn = sqlite3.connect(str(get_db_path()))
    # Improve concurrency: wait up to 5s on locks
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.row_factory = sqlite3.Row
    return conn


def _apply_statement(conn: sqlite3.Connection, statement: str) -> None:
    try:
        conn.execute(statement)
    except sqlite3.OperationalError as e:
        # Re-running an ALTER after a partial upgrade
        if "duplicate column name" not in str(e):
            raise


def init_database():
    """Initialize the queue database and migrate it to SCHEMA_VERSION"""
    conn = get_connection()
    try:
        conn.execute("PRAGMA journal_mode = WAL")
        version = conn.execute("PRAGMA user_version").fetchone()[0]

        for target in range(version, SCHEMA_VERSION):
            for statement in MIGRATIONS[target]:
                _apply_statement(conn, statement)
            conn.execute(f"PRAGMA user_version = {target + 1}")
            conn.commit()
            logger.info(f"Queue schema upgraded to v{target + 1}")

    except sqlite3.Error as e:
        conn.rollback()
        raise DatabaseException(f"Failed to initialize database: {e}")
    finally:
        conn.close()


def _connect_for_write() -> sqlite3.Connection:
    try:
        return get_connection()
    except sqlite3.Error as e:
        raise QueueWriteError(f"Queue unavailable: {e}")


def _write(statement: str, params: tuple) -> int:
    """Run one write in its own transaction, raising QueueWriteError on failure"""
    conn = _connect_for_write()
    try:
        with conn:
            cursor = conn.execute(statement, params)
        return cursor.rowcount
    except sqlite3.Error as e:
        raise QueueWriteError(f"Queue write failed: {e}")
    finally:
        conn.close()


# Settings functions
def get_setting(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get a setting value from the database"""
    conn = get_connection()
    try:
        cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['value'] if row else default
    finally:
        conn.close()


def set_setting(key: str, value: str):
    """Set a setting value in the database"""
    _write("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value))


# Attendance records
def _row_to_record(row: sqlite3.Row) -> PendingAttendanceRecord:
    return PendingAttendanceRecord(
        id=row['id'],
        user_id=row['user_id'],
        date=row['date'],
        kind=row['kind'],
        timestamp=row['timestamp'],
        latitude=row['latitude'],
        longitude=row['longitude'],
        accuracy=row['accuracy'],
        outside_zone=bool(row['outside_zone']),
        photo=bytes(row['photo']) if row['photo'] is not None else None,
        photo_url=row['photo_url'],
        zone_code=row['zone_code'],
        zone_name=row['zone_name'],
        is_inconsistent=bool(row['is_inconsistent']),
        inconsistency_note=row['inconsistency_note'],
        created_at=row['created_at'],
    )


def save_pending_record(record: PendingAttendanceRecord) -> None:
    """Upsert an attendance record by identity"""
    if not record.created_at:
        record.created_at = format_datetime(datetime.now())

    _write("""
        INSERT OR REPLACE INTO pending_records (
            id, user_id, date, kind, timestamp, latitude, longitude, accuracy,
            outside_zone, photo, photo_url, zone_code, zone_name,
            is_inconsistent, inconsistency_note, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        record.id, record.user_id, record.date, record.kind, record.timestamp,
        record.latitude, record.longitude, record.accuracy,
        int(record.outside_zone),
        sqlite3.Binary(record.photo) if record.photo is not None else None,
        record.photo_url, record.zone_code, record.zone_name,
        int(record.is_inconsistent), record.inconsistency_note, record.created_at,
    ))
    logger.debug(f"Queued {record.kind} {record.id} for user {record.user_id}")


def get_pending_record(record_id: str) -> Optional[PendingAttendanceRecord]:
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM pending_records WHERE id = ?", (record_id,)).fetchone()
        return _row_to_record(row) if row else None
    finally:
        conn.close()


def get_pending_records() -> List[PendingAttendanceRecord]:
    """Get all pending attendance records, oldest first"""
    conn = get_connection()
    try:
        cursor = conn.execute("SELECT * FROM pending_records ORDER BY created_at, id")
        return [_row_to_record(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def get_pending_records_by_user_and_date(user_id: str, date: str) -> List[PendingAttendanceRecord]:
    """Pending attendance records for one user and day (composite index lookup)"""
    conn = get_connection()
    try:
        cursor = conn.execute(
            "SELECT * FROM pending_records WHERE user_id = ? AND date = ? ORDER BY timestamp DESC",
            (user_id, date)
        )
        return [_row_to_record(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def delete_pending_record(record_id: str) -> bool:
    return _write("DELETE FROM pending_records WHERE id = ?", (record_id,)) > 0


def set_record_zone(record_id: str, zone: ZoneResult) -> bool:
    """Attach a zone resolution to a queued attendance record"""
    return _write(
        "UPDATE pending_records SET zone_code = ?, zone_name = ? WHERE id = ?",
        (zone.code, zone.name, record_id)
    ) > 0


def attach_record_photo_url(record_id: str, photo_url: str) -> bool:
    """Replace the held photo payload with its uploaded reference"""
    return _write(
        "UPDATE pending_records SET photo_url = ?, photo = NULL WHERE id = ?",
        (photo_url, record_id)
    ) > 0


# Location samples
def _row_to_sample(row: sqlite3.Row) -> PendingLocationSample:
    return PendingLocationSample(
        id=row['id'],
        user_id=row['user_id'],
        date=row['date'],
        session_id=row['session_id'],
        timestamp=row['timestamp'],
        latitude=row['latitude'],
        longitude=row['longitude'],
        accuracy=row['accuracy'],
        outside_zone=bool(row['outside_zone']),
        zone_code=row['zone_code'],
        zone_name=row['zone_name'],
        source=row['source'],
        created_at=row['created_at'],
    )


def save_pending_sample(sample: PendingLocationSample) -> None:
    """Upsert a location sample by identity"""
    if not sample.created_at:
        sample.created_at = format_datetime(datetime.now())

    _write("""
        INSERT OR REPLACE INTO pending_samples (
            id, user_id, date, session_id, timestamp, latitude, longitude,
            accuracy, outside_zone, zone_code, zone_name, source, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        sample.id, sample.user_id, sample.date, sample.session_id, sample.timestamp,
        sample.latitude, sample.longitude, sample.accuracy, int(sample.outside_zone),
        sample.zone_code, sample.zone_name, sample.source, sample.created_at,
    ))


def get_pending_samples() -> List[PendingLocationSample]:
    conn = get_connection()
    try:
        cursor = conn.execute("SELECT * FROM pending_samples ORDER BY created_at, id")
        return [_row_to_sample(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def get_pending_samples_by_user_and_date(user_id: str, date: str) -> List[PendingLocationSample]:
    conn = get_connection()
    try:
        cursor = conn.execute(
            "SELECT * FROM pending_samples WHERE user_id = ? AND date = ? ORDER BY timestamp DESC",
            (user_id, date)
        )
        return [_row_to_sample(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def delete_pending_sample(sample_id: str) -> bool:
    return _write("DELETE FROM pending_samples WHERE id = ?", (sample_id,)) > 0


def set_sample_zone(sample_id: str, zone: ZoneResult) -> bool:
    return _write(
        "UPDATE pending_samples SET zone_code = ?, zone_name = ? WHERE id = ?",
        (zone.code, zone.name, sample_id)
    ) > 0


# Follow-up photos
def _row_to_follow_up(row: sqlite3.Row) -> PendingFollowUpPhoto:
    return PendingFollowUpPhoto(
        id=row['id'],
        user_id=row['user_id'],
        session_id=row['session_id'],
        slot=int(row['slot']),
        timestamp=row['timestamp'],
        photo=bytes(row['photo']) if row['photo'] is not None else None,
        photo_url=row['photo_url'],
        created_at=row['created_at'],
    )


def save_pending_follow_up(follow_up: PendingFollowUpPhoto) -> None:
    """Queue a follow-up photo, superseding any unsynced capture for the same slot"""
    if not follow_up.created_at:
        follow_up.created_at = format_datetime(datetime.now())

    conn = _connect_for_write()
    try:
        with conn:
            superseded = conn.execute(
                "DELETE FROM pending_follow_ups WHERE user_id = ? AND session_id = ? AND slot = ? AND id != ?",
                (follow_up.user_id, follow_up.session_id, follow_up.slot, follow_up.id)
            ).rowcount
            conn.execute("""
                INSERT OR REPLACE INTO pending_follow_ups (
                    id, user_id, session_id, slot, timestamp, photo, photo_url, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                follow_up.id, follow_up.user_id, follow_up.session_id, follow_up.slot,
                follow_up.timestamp,
                sqlite3.Binary(follow_up.photo) if follow_up.photo is not None else None,
                follow_up.photo_url, follow_up.created_at,
            ))
    except sqlite3.Error as e:
        raise QueueWriteError(f"Queue write failed: {e}")
    finally:
        conn.close()

    if superseded:
        logger.info(f"Follow-up slot {follow_up.slot} for session {follow_up.session_id} superseded")


def get_pending_follow_ups() -> List[PendingFollowUpPhoto]:
    conn = get_connection()
    try:
        cursor = conn.execute("SELECT * FROM pending_follow_ups ORDER BY created_at, id")
        return [_row_to_follow_up(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def delete_pending_follow_up(follow_up_id: str) -> bool:
    return _write("DELETE FROM pending_follow_ups WHERE id = ?", (follow_up_id,)) > 0


def attach_follow_up_photo_url(follow_up_id: str, photo_url: str) -> bool:
    return _write(
        "UPDATE pending_follow_ups SET photo_url = ?, photo = NULL WHERE id = ?",
        (photo_url, follow_up_id)
    ) > 0


# Backlog
def get_pending_counts() -> Dict[str, int]:
    """Pending entries per kind, across all users"""
    conn = get_connection()
    try:
        return {
            'attendance': conn.execute("SELECT COUNT(*) FROM pending_records").fetchone()[0],
            'samples': conn.execute("SELECT COUNT(*) FROM pending_samples").fetchone()[0],
            'follow_ups': conn.execute("SELECT COUNT(*) FROM pending_follow_ups").fetchone()[0],
        }
    finally:
        conn.close()


def get_pending_count() -> int:
    """Total pending entries across all users and kinds"""
    return sum(get_pending_counts().values())


def clear_all_pending() -> None:
    """Drop every pending entry (operator reset)"""
    conn = _connect_for_write()
    try:
        with conn:
            conn.execute("DELETE FROM pending_records")
            conn.execute("DELETE FROM pending_samples")
            conn.execute("DELETE FROM pending_follow_ups")
    except sqlite3.Error as e:
        raise QueueWriteError(f"Queue clear failed: {e}")
    finally:
        conn.close()
    logger.warning("All pending entries cleared")
