"""
Remote services client for FieldClock.
Talks to the Supabase-compatible REST API (tables, storage and RPC) over HTTP.
"""

from typing import Any, Dict, List, Optional

import requests

from fieldclock.shared.logging_config import get_sync_logger
from fieldclock.shared.models import (AttendanceEntry, PendingAttendanceRecord,
                                      PendingFollowUpPhoto,
                                      PendingLocationSample, ServerConfig)
from fieldclock.shared.utils import to_float_optional

logger = get_sync_logger()

ATTENDANCE_TABLE = "registros_asistencia"
SAMPLES_TABLE = "tracking_ubicaciones"
FOLLOW_UPS_TABLE = "seguimiento_fotos"
ZONE_LOOKUP_RPC = "get_hacienda_by_point"

UNIQUE_VIOLATION = "23505"
SYNCED_MARKER = "sincronizado"

# Remote wire values for enums that the local model spells in English
KIND_TO_REMOTE = {'clock-in': 'entrada', 'clock-out': 'salida'}
KIND_FROM_REMOTE = {v: k for k, v in KIND_TO_REMOTE.items()}
SOURCE_TO_REMOTE = {
    'hourly': 'hourly',
    'session-start': 'entrada',
    'session-end': 'salida',
    'manual': 'manual',
}


class RemoteError(Exception):
    """A remote call failed (network, storage or insert error)"""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class DuplicateIdentityError(RemoteError):
    """The remote store already holds a row with this identity"""
    pass


def attendance_row(record: PendingAttendanceRecord, photo_url: Optional[str]) -> Dict[str, Any]:
    """Remote row for an attendance record"""
    return {
        'id': record.id,
        'user_id': record.user_id,
        'fecha': record.date,
        'tipo_registro': KIND_TO_REMOTE[record.kind],
        'timestamp': record.timestamp,
        'latitud': record.latitude,
        'longitud': record.longitude,
        'precision_gps': record.accuracy,
        'fuera_zona': record.outside_zone,
        'foto_url': photo_url,
        'estado_sync': SYNCED_MARKER,
        'es_inconsistente': record.is_inconsistent,
        'nota_inconsistencia': record.inconsistency_note,
        'hac_ste': record.zone_code,
        'suerte_nom': record.zone_name,
    }


def sample_row(sample: PendingLocationSample) -> Dict[str, Any]:
    """Remote row for a location sample"""
    return {
        'id': sample.id,
        'user_id': sample.user_id,
        'fecha': sample.date,
        'entrada_id': sample.session_id,
        'recorded_at': sample.timestamp,
        'latitud': sample.latitude,
        'longitud': sample.longitude,
        'precision_gps': sample.accuracy,
        'fuera_zona': sample.outside_zone,
        'hac_ste': sample.zone_code,
        'suerte_nom': sample.zone_name,
        'source': SOURCE_TO_REMOTE[sample.source],
    }


def follow_up_row(follow_up: PendingFollowUpPhoto, photo_url: str) -> Dict[str, Any]:
    """Remote row for a follow-up evidence photo"""
    return {
        'id': follow_up.id,
        'entrada_id': follow_up.session_id,
        'user_id': follow_up.user_id,
        'evidencia_n': follow_up.slot,
        'foto_url': photo_url,
    }


def entry_from_row(row: Dict[str, Any]) -> AttendanceEntry:
    """Attendance view entry from a remote row"""
    zone_code = row.get('hac_ste')
    zone_name = row.get('suerte_nom')
    if zone_code is None or zone_name is None:
        zone_code = zone_name = None

    return AttendanceEntry(
        id=str(row['id']),
        user_id=str(row['user_id']),
        date=row['fecha'],
        kind=KIND_FROM_REMOTE.get(row['tipo_registro'], row['tipo_registro']),
        timestamp=row['timestamp'],
        latitude=to_float_optional(row.get('latitud')),
        longitude=to_float_optional(row.get('longitud')),
        accuracy=to_float_optional(row.get('precision_gps')),
        outside_zone=bool(row.get('fuera_zona')),
        photo_url=row.get('foto_url'),
        zone_code=zone_code,
        zone_name=zone_name,
        is_inconsistent=bool(row.get('es_inconsistente')),
        inconsistency_note=row.get('nota_inconsistencia'),
        pending=False,
    )


class RemoteStore:
    """
    HTTP client for the remote side:
    - idempotent inserts keyed by record identity
    - attendance queries by user and date
    - photo upload with overwrite
    - point-in-zone lookups
    """

    def __init__(self, config: ServerConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()
        self._session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'FieldClock-Client/1.0'
        })
        self.set_api_key(config.api_key)

    def set_api_key(self, api_key: str) -> None:
        if api_key:
            self._session.headers['apikey'] = api_key
            self._session.headers['Authorization'] = f'Bearer {api_key}'
            logger.debug(f"Session initialized with API key: {api_key[:8]}... (length={len(api_key)})")
        else:
            self._session.headers.pop('apikey', None)
            self._session.headers.pop('Authorization', None)

    def _url(self, path: str) -> str:
        return f"{self.config.server_url}{path}"

    @staticmethod
    def _error_from_response(response, action: str) -> RemoteError:
        code = None
        try:
            body = response.json()
            if isinstance(body, dict):
                code = body.get('code')
        except ValueError:
            pass

        message = f"{action} failed: {response.status_code} - {response.text[:200]}"
        # 409 alone is not enough: PostgREST also uses it for foreign-key violations
        if code == UNIQUE_VIOLATION:
            return DuplicateIdentityError(message, response.status_code, code)
        return RemoteError(message, response.status_code, code)

    def _insert(self, table: str, row: Dict[str, Any]) -> None:
        try:
            response = self._session.post(
                self._url(f"/rest/v1/{table}"),
                json=row,
                headers={'Prefer': 'return=minimal'},
                timeout=self.config.timeout
            )
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"Insert into {table} failed: {e}")

        if response.status_code not in (200, 201, 204):
            raise self._error_from_response(response, f"Insert into {table}")

    def insert_attendance(self, record: PendingAttendanceRecord, photo_url: Optional[str]) -> None:
        """Insert an attendance row; raises DuplicateIdentityError if the id exists"""
        self._insert(ATTENDANCE_TABLE, attendance_row(record, photo_url))

    def insert_location_sample(self, sample: PendingLocationSample) -> None:
        self._insert(SAMPLES_TABLE, sample_row(sample))

    def insert_follow_up(self, follow_up: PendingFollowUpPhoto, photo_url: str) -> None:
        self._insert(FOLLOW_UPS_TABLE, follow_up_row(follow_up, photo_url))

    def query_attendance(self, user_id: str, date: str) -> List[AttendanceEntry]:
        """Attendance rows for a user and day, newest first"""
        try:
            response = self._session.get(
                self._url(f"/rest/v1/{ATTENDANCE_TABLE}"),
                params={
                    'select': '*',
                    'user_id': f'eq.{user_id}',
                    'fecha': f'eq.{date}',
                    'order': 'timestamp.desc',
                },
                timeout=self.config.timeout
            )
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"Attendance query failed: {e}")

        if response.status_code != 200:
            raise self._error_from_response(response, "Attendance query")

        return [entry_from_row(row) for row in response.json() or []]

    def upload_photo(self, path: str, data: bytes, content_type: str = 'image/jpeg') -> str:
        """Upload (overwriting) a photo and return its public reference"""
        bucket = self.config.photo_bucket
        try:
            response = self._session.post(
                self._url(f"/storage/v1/object/{bucket}/{path}"),
                data=data,
                headers={'Content-Type': content_type, 'x-upsert': 'true'},
                timeout=self.config.timeout
            )
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"Photo upload failed: {e}")

        if response.status_code not in (200, 201):
            raise RemoteError(
                f"Photo upload failed: {response.status_code} - {response.text[:200]}",
                response.status_code
            )

        return self.public_url(path)

    def public_url(self, path: str) -> str:
        return self._url(f"/storage/v1/object/public/{self.config.photo_bucket}/{path}")

    def lookup_zone(self, lat: float, lon: float) -> List[Dict[str, Any]]:
        """Raw point-in-zone lookup rows (``hac_ste``/``nom``)"""
        try:
            response = self._session.post(
                self._url(f"/rest/v1/rpc/{ZONE_LOOKUP_RPC}"),
                json={'lat': lat, 'lon': lon},
                timeout=self.config.timeout
            )
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"Zone lookup failed: {e}")

        if response.status_code != 200:
            raise self._error_from_response(response, "Zone lookup")

        return response.json() or []

    def check_health(self) -> bool:
        """Check if the remote is reachable"""
        try:
            response = self._session.get(self._url("/auth/v1/health"), timeout=3)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Connection check failed: {e}")
            return False

        if response.status_code == 401:
            logger.warning("Unauthorized (401) on health check - API key may be invalid")
        elif response.status_code != 200:
            logger.debug(f"Health check returned {response.status_code}: {response.text[:200]}")

        return response.status_code == 200
