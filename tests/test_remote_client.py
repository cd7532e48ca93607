from __future__ import annotations

import pytest
import requests

from fieldclock.client.remote_client import (DuplicateIdentityError,
                                             RemoteError, RemoteStore,
                                             entry_from_row)
from fieldclock.shared.models import (PendingAttendanceRecord,
                                      PendingLocationSample)
from tests.fakes import FakeResponse, FakeSession


def store(config, *responses):
    session = FakeSession(*responses)
    return RemoteStore(config, session=session), session


def record() -> PendingAttendanceRecord:
    return PendingAttendanceRecord(id="r1", user_id="u1", date="2026-10-16", kind="clock-out",
                                   timestamp="2026-10-16T17:00:00+00:00", photo_url="https://x/r1.jpg")


def test_api_key_headers(config):
    remote, session = store(config)
    assert session.headers["apikey"] == "test-key"
    assert session.headers["Authorization"] == "Bearer test-key"


def test_insert_posts_row_to_table(config):
    remote, session = store(config, FakeResponse(201))

    remote.insert_attendance(record(), "https://x/r1.jpg")

    method, url, kwargs = session.requests[0]
    assert url == "https://field.example.co/rest/v1/registros_asistencia"
    assert kwargs["json"]["tipo_registro"] == "salida"
    assert kwargs["json"]["estado_sync"] == "sincronizado"
    assert kwargs["headers"]["Prefer"] == "return=minimal"


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(409, {"code": "23505", "message": "duplicate key"}),
        FakeResponse(400, {"code": "23505", "message": "duplicate key"}),
    ],
)
def test_uniqueness_violation_maps_to_duplicate(config, response):
    remote, _ = store(config, response)
    with pytest.raises(DuplicateIdentityError):
        remote.insert_attendance(record(), None)


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(409, {"code": "23503", "message": "insert or update violates foreign key constraint"}),
        FakeResponse(409, None),
        FakeResponse(409, ["not", "an", "object"]),
    ],
)
def test_conflict_without_uniqueness_code_is_not_duplicate(config, response):
    remote, _ = store(config, response)
    with pytest.raises(RemoteError) as excinfo:
        remote.insert_location_sample(PendingLocationSample(id="s1", user_id="u1", session_id="r1"))
    assert not isinstance(excinfo.value, DuplicateIdentityError)
    assert excinfo.value.status_code == 409


def test_server_error_is_plain_remote_error(config):
    remote, _ = store(config, FakeResponse(500, {"message": "boom"}))
    with pytest.raises(RemoteError) as excinfo:
        remote.insert_attendance(record(), None)
    assert not isinstance(excinfo.value, DuplicateIdentityError)
    assert excinfo.value.status_code == 500


def test_network_error_is_remote_error(config):
    remote, _ = store(config, requests.exceptions.ConnectionError("unreachable"))
    with pytest.raises(RemoteError):
        remote.insert_location_sample(PendingLocationSample(id="s1", user_id="u1", session_id="r1"))


def test_upload_overwrites_and_returns_public_url(config):
    remote, session = store(config, FakeResponse(200, {"Key": "attendance-photos/u1/r1.jpg"}))

    url = remote.upload_photo("u1/r1.jpg", b"jpeg")

    method, request_url, kwargs = session.requests[0]
    assert request_url == "https://field.example.co/storage/v1/object/attendance-photos/u1/r1.jpg"
    assert kwargs["headers"]["x-upsert"] == "true"
    assert kwargs["data"] == b"jpeg"
    assert url == "https://field.example.co/storage/v1/object/public/attendance-photos/u1/r1.jpg"


def test_query_filters_by_user_and_date(config):
    rows = [{"id": "r1", "user_id": "u1", "fecha": "2026-10-16", "tipo_registro": "entrada",
             "timestamp": "2026-10-16T07:00:00+00:00", "latitud": "10.5"}]
    remote, session = store(config, FakeResponse(200, rows))

    entries = remote.query_attendance("u1", "2026-10-16")

    params = session.requests[0][2]["params"]
    assert params["user_id"] == "eq.u1"
    assert params["fecha"] == "eq.2026-10-16"
    assert params["order"] == "timestamp.desc"
    assert entries[0].kind == "clock-in"
    assert entries[0].latitude == 10.5


def test_zone_lookup_calls_rpc(config):
    remote, session = store(config, FakeResponse(200, [{"hac_ste": "H-01", "nom": "Z1"}]))

    rows = remote.lookup_zone(10.0, -75.0)

    method, url, kwargs = session.requests[0]
    assert url.endswith("/rest/v1/rpc/get_hacienda_by_point")
    assert kwargs["json"] == {"lat": 10.0, "lon": -75.0}
    assert rows[0]["nom"] == "Z1"


def test_health_check(config):
    remote, _ = store(config, FakeResponse(200), FakeResponse(401), requests.exceptions.Timeout())
    assert remote.check_health() is True
    assert remote.check_health() is False
    assert remote.check_health() is False


def test_entry_from_row_drops_half_zone():
    entry = entry_from_row({"id": 7, "user_id": "u1", "fecha": "2026-10-16", "tipo_registro": "salida",
                            "timestamp": "t", "hac_ste": "H-01", "suerte_nom": None})
    assert entry.id == "7"
    assert entry.kind == "clock-out"
    assert entry.zone_code is None and entry.zone_name is None
    assert entry.pending is False
