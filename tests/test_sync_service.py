from __future__ import annotations

import threading

import pytest

from fieldclock.client.remote_client import RemoteStore
from fieldclock.client.sync_service import (RemoteSyncService,
                                            attendance_photo_path,
                                            follow_up_photo_path)
from fieldclock.shared import db_helpers
from fieldclock.shared.models import (PendingAttendanceRecord,
                                      PendingFollowUpPhoto,
                                      PendingLocationSample, ServerConfig,
                                      SyncState)
from tests.fakes import FakeResponse, FakeSession


def queued_record(**overrides) -> PendingAttendanceRecord:
    data = dict(
        user_id="u1",
        date="2026-10-16",
        kind="clock-in",
        timestamp="2026-10-16T12:00:00+00:00",
        latitude=10.0,
        longitude=-75.0,
        accuracy=5.0,
        photo=b"jpeg",
        created_at="2026-10-16T12:00:00+00:00",
    )
    data.update(overrides)
    record = PendingAttendanceRecord(**data)
    db_helpers.save_pending_record(record)
    return record


def test_offline_capture_syncs_after_reconnect_with_backfilled_zone(service, remote):
    remote.zones[(10.0, -75.0)] = ("H-01", "Z1")
    record = queued_record()

    assert service.sync_pending_record(record) is False
    assert remote.upload_calls == 0

    service.set_online(True)
    assert service.background_triggers == [True]

    report = service.sync_all()

    assert report.succeeded == 1 and report.ok
    row = remote.attendance[record.id]
    assert row["hac_ste"] == "H-01"
    assert row["suerte_nom"] == "Z1"
    assert row["foto_url"] == f"https://storage.test/public/u1/{record.id}.jpg"
    assert row["tipo_registro"] == "entrada"
    assert db_helpers.get_pending_record(record.id) is None


def test_duplicate_insert_counts_as_synced(online_service, remote):
    record = queued_record()
    # A previous pass inserted the row but lost the eviction
    remote.insert_attendance(record, "https://storage.test/public/earlier.jpg")

    report = online_service.sync_all()

    assert report.succeeded == 1
    assert len(remote.attendance) == 1
    assert db_helpers.get_pending_record(record.id) is None


def test_insert_failure_keeps_record_queued(online_service, remote):
    record = queued_record()
    remote.fail_insert = True

    report = online_service.sync_all()

    assert report.failed == 1 and not report.ok
    assert remote.attendance == {}
    assert db_helpers.get_pending_record(record.id) is not None
    assert online_service.last_error == "1 entries could not be synced"


def test_upload_failure_keeps_photo_payload(online_service, remote):
    record = queued_record()
    remote.fail_upload = True

    online_service.sync_all()

    stored = db_helpers.get_pending_record(record.id)
    assert stored.photo == b"jpeg"
    assert stored.photo_url is None
    assert remote.insert_calls == 0


def test_retry_after_insert_failure_reuses_uploaded_photo(online_service, remote):
    record = queued_record()
    remote.fail_insert = True
    online_service.sync_all()
    assert remote.upload_calls == 1
    assert db_helpers.get_pending_record(record.id).photo_url is not None

    remote.fail_insert = False
    online_service.sync_all()

    assert remote.upload_calls == 1
    assert record.id in remote.attendance


def test_zone_miss_does_not_block_insert(online_service, remote):
    record = queued_record(latitude=1.0, longitude=1.0)

    online_service.sync_all()

    row = remote.attendance[record.id]
    assert row["hac_ste"] is None and row["suerte_nom"] is None
    assert row["fuera_zona"] is False


def test_existing_zone_is_not_looked_up_again(online_service, remote):
    queued_record(zone_code="H-07", zone_name="Z7")

    online_service.sync_all()

    assert remote.lookup_calls == 0


def test_records_drain_oldest_first(online_service, remote):
    order = []
    original = remote.insert_attendance

    def recording_insert(record, photo_url):
        order.append(record.id)
        original(record, photo_url)

    remote.insert_attendance = recording_insert
    late = queued_record(created_at="2026-10-16T12:05:00+00:00")
    early = queued_record(created_at="2026-10-16T11:55:00+00:00")

    online_service.sync_all()

    assert order == [early.id, late.id]


def test_pass_is_skipped_offline(service):
    queued_record()

    report = service.sync_all()

    assert report.skipped
    assert db_helpers.get_pending_count() == 1


def test_overlapping_pass_is_skipped(online_service, remote):
    record = queued_record()
    online_service._sync_lock.acquire()
    try:
        assert online_service.sync_all().skipped
        assert online_service.sync_pending_record(record) is False
    finally:
        online_service._sync_lock.release()

    assert remote.insert_calls == 0


def test_only_offline_to_online_transition_triggers_pass(service):
    service.set_online(False)
    assert service.background_triggers == []

    service.set_online(True)
    service.set_online(True)
    assert service.background_triggers == [True]

    service.set_online(False)
    service.set_online(True)
    assert service.background_triggers == [True, True]


def test_connectivity_signal_fires_on_transition(service):
    seen = []
    service.connectivity_changed.connect(seen.append)

    service.set_online(True)
    service.set_online(False)

    assert seen == [True, False]


def test_check_connection_uses_health_endpoint(service, remote):
    remote.healthy = False
    assert service.check_connection() is False
    assert service.is_online is False

    remote.healthy = True
    assert service.check_connection() is True
    assert service.background_triggers == [True]


def test_request_sync_deferred_when_offline(service):
    assert service.request_sync() is False
    assert service.background_triggers == []


def sample(**overrides) -> PendingLocationSample:
    data = dict(user_id="u1", date="2026-10-16", session_id="s1", timestamp="2026-10-16T13:00:00+00:00",
                latitude=10.0, longitude=-75.0, source="hourly")
    data.update(overrides)
    return PendingLocationSample(**data)


def test_sample_written_directly_when_online(online_service, remote):
    s = sample()

    assert online_service.write_location_sample(s) is True

    assert s.id in remote.samples
    assert db_helpers.get_pending_samples() == []


def test_sample_queued_when_offline(service, remote):
    s = sample()

    assert service.write_location_sample(s) is False

    assert remote.samples == {}
    assert [p.id for p in db_helpers.get_pending_samples()] == [s.id]


def test_sample_queued_when_direct_write_fails(online_service, remote):
    remote.fail_insert = True

    assert online_service.write_location_sample(sample()) is False
    assert len(db_helpers.get_pending_samples()) == 1


def test_queued_sample_gets_zone_backfilled(online_service, remote):
    remote.zones[(10.0, -75.0)] = ("H-01", "Z1")
    s = sample()
    db_helpers.save_pending_sample(s)

    online_service.sync_all()

    row = remote.samples[s.id]
    assert row["hac_ste"] == "H-01"
    assert row["entrada_id"] == "s1"
    assert db_helpers.get_pending_samples() == []


def test_follow_up_photo_uploaded_to_slot_path(online_service, remote):
    follow_up = PendingFollowUpPhoto(user_id="u1", session_id="s1", slot=2, timestamp="t", photo=b"evidence")
    db_helpers.save_pending_follow_up(follow_up)

    online_service.sync_all()

    assert remote.uploads == {"u1/s1_seg_2.jpg": b"evidence"}
    assert remote.follow_ups[follow_up.id]["evidencia_n"] == 2
    assert db_helpers.get_pending_follow_ups() == []


def test_photo_paths():
    record = PendingAttendanceRecord(id="r1", user_id="u1", photo=b"x")
    follow_up = PendingFollowUpPhoto(user_id="u1", session_id="s1", slot=1, photo=b"x")
    assert attendance_photo_path(record) == "u1/r1.jpg"
    assert follow_up_photo_path(follow_up) == "u1/s1_seg_1.jpg"


def test_status_counts_every_pending_kind(service):
    queued_record()
    db_helpers.save_pending_sample(sample())

    status = service.get_sync_status()

    assert status.pending_count == 2
    assert status.pending_attendance == 1
    assert status.pending_samples == 1
    assert status.is_online is False


@pytest.mark.parametrize(
    "current, target, valid",
    [
        (SyncState.QUEUED, SyncState.UPLOADING_PHOTO, True),
        (SyncState.UPLOADING_PHOTO, SyncState.RESOLVING_ZONE, True),
        (SyncState.RESOLVING_ZONE, SyncState.INSERTING, True),
        (SyncState.INSERTING, SyncState.DONE, True),
        (SyncState.INSERTING, SyncState.QUEUED, True),
        (SyncState.QUEUED, SyncState.DONE, False),
        (SyncState.DONE, SyncState.QUEUED, False),
    ],
)
def test_sync_state_transitions(current, target, valid):
    assert SyncState.is_valid_transition(current.value, target.value) is valid


def test_update_config_persists_settings(service, remote):
    service.update_config(ServerConfig(server_url="https://other.example.co/", api_key="k2", device_id="device-9",
                                       sync_interval=60))

    reloaded = RemoteSyncService(remote=remote)
    assert reloaded.config.server_url == "https://other.example.co"
    assert reloaded.config.api_key == "k2"
    assert reloaded.config.device_id == "device-9"
    assert reloaded.config.sync_interval == 60


def test_device_id_generated_on_first_load(remote):
    first = RemoteSyncService(remote=remote)

    assert first.config.device_id.startswith("fieldclock-")
    assert RemoteSyncService(remote=remote).config.device_id == first.config.device_id
    assert first.is_configured() is False


def http_service(config, *responses) -> RemoteSyncService:
    svc = RemoteSyncService(config=config, remote=RemoteStore(config, session=FakeSession(*responses)))
    svc._trigger_background_sync = lambda: None
    svc.set_online(True)
    return svc


def test_foreign_key_conflict_keeps_follow_up_queued(config):
    follow_up = PendingFollowUpPhoto(user_id="u1", session_id="still-queued", slot=1, timestamp="t", photo=b"p")
    db_helpers.save_pending_follow_up(follow_up)
    svc = http_service(
        config,
        FakeResponse(200, {"Key": "attendance-photos/u1/still-queued_seg_1.jpg"}),
        FakeResponse(409, {"code": "23503", "message": "violates foreign key constraint"}),
    )

    report = svc.sync_all()

    assert report.succeeded == 0 and report.failed == 1
    pending = db_helpers.get_pending_follow_ups()
    assert [f.id for f in pending] == [follow_up.id]
    assert pending[0].photo_url is not None


def test_foreign_key_conflict_queues_direct_sample(config):
    svc = http_service(config, FakeResponse(409, {"code": "23503", "message": "violates foreign key constraint"}))
    s = sample(session_id="still-queued")

    assert svc.write_location_sample(s) is False

    assert [p.id for p in db_helpers.get_pending_samples()] == [s.id]


def test_uniqueness_conflict_evicts_over_http(config):
    s = sample()
    db_helpers.save_pending_sample(s)
    svc = http_service(
        config,
        FakeResponse(200, []),
        FakeResponse(409, {"code": "23505", "message": "duplicate key value violates unique constraint"}),
    )

    report = svc.sync_all()

    assert report.succeeded == 1
    assert db_helpers.get_pending_samples() == []


def test_capture_skipped_during_pass_gets_follow_up_pass(online_service, remote):
    first = queued_record()
    late = PendingAttendanceRecord(user_id="u1", date="2026-10-16", kind="clock-out",
                                   timestamp="2026-10-16T17:00:00+00:00", photo=b"jpeg", created_at="z")
    original = remote.insert_attendance
    immediate = []

    def insert_while_capturing(record, photo_url):
        original(record, photo_url)
        if record.id == first.id:
            # A capture lands after the pass listed the queue
            db_helpers.save_pending_record(late)
            immediate.append(online_service.sync_pending_record(late))

    remote.insert_attendance = insert_while_capturing

    online_service.sync_all()

    assert immediate == [False]
    assert db_helpers.get_pending_record(late.id) is not None
    assert online_service.background_triggers == [True]

    online_service.sync_all()

    assert late.id in remote.attendance
    assert online_service.background_triggers == [True]


def test_explicit_pass_waits_for_running_one(online_service):
    queued_record()
    online_service._sync_lock.acquire()
    release = threading.Timer(0.1, online_service._sync_lock.release)
    release.start()

    report = online_service.sync_all(wait=True)

    release.join()
    assert not report.skipped
    assert report.succeeded == 1


def test_connection_check_can_leave_sync_to_caller(service):
    assert service.check_connection(trigger_sync=False) is True
    assert service.is_online
    assert service.background_triggers == []
