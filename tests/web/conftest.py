"""Shared fixtures for web tests."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from shadowline.config import Settings
from shadowline.live.session import LiveSession
from shadowline.shadow.models import LapRecord, ShadowPoint, ShadowState
from shadowline.telemetry.connection import StreamConnection
from shadowline.web.app import create_app


@pytest.fixture
def transport_factory():
    """Stands in for SSE/replay; ``factory.call_args.args[1]`` is the open callback."""
    return MagicMock()


@pytest.fixture
def session(transport_factory):
    connection = StreamConnection(transport_factory=transport_factory, scheduler=MagicMock())
    return LiveSession(connection=connection)


@pytest.fixture
def client(session):
    """FastAPI test client around a session with no real transport."""
    app = create_app(session=session, settings=Settings(endpoint="http://192.168.4.1/events"))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def engine():
    """A mocked engine whose reads return empty live state."""
    e = MagicMock()
    e.config = None
    e.get_state.return_value = ShadowState()
    e.get_completed_laps.return_value = []
    e.get_shadow_lap.return_value = None
    return e


@pytest.fixture
def mock_client(engine):
    session = LiveSession(connection=StreamConnection(transport_factory=MagicMock()), engine=engine)
    app = create_app(session=session, settings=Settings())
    with TestClient(app) as c:
        yield c


def make_lap(lap_id: str = "lap_1714564800000_1", lap_number: int = 1, lap_time: float = 92.4) -> LapRecord:
    """Build a small completed lap."""
    points = tuple(
        ShadowPoint(
            distance=d,
            lat=38.1615,
            lon=-122.454,
            speed_kmh=120.0,
            heading=90.0,
            g_lateral=0.2,
            elapsed_time=d / 40.0,
            sector_index=0,
        )
        for d in (0.0, 1000.0, 2000.0)
    )
    return LapRecord(
        id=lap_id,
        lap_number=lap_number,
        start_time=1_714_564_800_000.0,
        end_time=1_714_564_800_000.0 + lap_time * 1000.0,
        total_distance=3700.0,
        lap_time=lap_time,
        is_complete=True,
        points=points,
        sector_times=(30.1, 31.0, 31.3),
    )
