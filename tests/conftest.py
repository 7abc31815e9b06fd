"""
Shared fixtures: an on-disk SQLite database per test, a broadcast hub,
a recording SMS transport and a wired AlertWorkflow.
"""

from __future__ import annotations

import pytest

from backend.app.alerts.alert_service import AlertWorkflow
from backend.app.alerts.sms_dispatcher import SmsDispatcher
from backend.app.core.database import build_engine, build_session_factory, init_db
from backend.app.realtime.hub import BroadcastHub
from backend.app.storage.repository import AlertStorage

from tests.fakes import RecordingTransport


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'alerts.db'}"


@pytest.fixture
async def storage(database_url):
    engine = build_engine(database_url)
    await init_db(engine)
    yield AlertStorage(build_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def workflow(storage, hub, transport) -> AlertWorkflow:
    return AlertWorkflow(storage, hub, SmsDispatcher(transport))


@pytest.fixture
async def villages(storage):
    """Two villages in the same district."""
    north = await storage.create_village("Kalopanagiotis", "Nicosia")
    south = await storage.create_village("Pedoulas", "Nicosia")
    return north, south
