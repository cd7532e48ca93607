from __future__ import annotations

import pytest
from PyQt6.QtCore import QCoreApplication

from fieldclock.client.sync_service import RemoteSyncService
from fieldclock.shared import db_helpers
from fieldclock.shared.models import ServerConfig
from tests.fakes import FakeRemote


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture(autouse=True)
def queue_db(tmp_path, monkeypatch):
    db_path = tmp_path / "queue.db"
    monkeypatch.setattr(db_helpers, "get_db_path", lambda: db_path)
    db_helpers.init_database()
    return db_path


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def config():
    return ServerConfig(server_url="https://field.example.co", api_key="test-key", device_id="device-1")


@pytest.fixture
def service(config, remote):
    svc = RemoteSyncService(config=config, remote=remote)
    # Background passes are driven explicitly by the tests
    svc.background_triggers = []
    svc._trigger_background_sync = lambda: svc.background_triggers.append(True)
    yield svc
    svc.stop()


@pytest.fixture
def online_service(service):
    service.set_online(True)
    service.background_triggers.clear()
    return service
