from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pycarsoc.charging import SessionEvent, SessionEventType, TrackerState
from pycarsoc.engine import TelemetryEngine
from pycarsoc.exceptions import ProviderError
from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.providers.base import DataSource, DataSourceProvider
from pycarsoc.providers.mock import MockProvider
from pycarsoc.sinks import MemorySink

_T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class _ScriptedCloud(DataSourceProvider):
    source = DataSource.CLOUD

    def __init__(self, *, available: bool = True) -> None:
        super().__init__()
        self.available = available

    async def connect(self) -> bool:
        self._set_connected(self.available)
        return self.available

    async def disconnect(self) -> None:
        self._set_connected(False)

    def push(self, minute: int, cumulative: float, current: float, soc: float) -> None:
        self._publish(
            TelemetrySnapshot(
                timestamp=_T0 + timedelta(minutes=minute),
                state_of_charge=soc,
                battery_voltage=400.0,
                battery_current=current,
                cumulative_charge=cumulative,
                odometer=15000.0,
            )
        )

    def drop(self) -> None:
        self._set_connected(False)


class _ScriptedMock(_ScriptedCloud):
    source = DataSource.MOCK


@pytest.mark.asyncio
async def test_engine_runs_mock_source() -> None:
    sink = MemorySink()
    mock = MockProvider(interval=3600)

    async with TelemetryEngine([mock], sink=sink) as engine:
        assert engine.is_running
        assert engine.active_source is DataSource.MOCK
        assert engine.require_source() is DataSource.MOCK
        assert engine.latest is not None
        assert len(sink.snapshots) == 1
        assert engine.tracker.state is TrackerState.IDLE

    assert not engine.is_running
    assert not mock.is_connected
    assert sink.sessions == []


@pytest.mark.asyncio
async def test_engine_archives_session_on_stop() -> None:
    sink = MemorySink()
    cloud = _ScriptedCloud()
    engine = TelemetryEngine([cloud], sink=sink, previous_end_odometer=14900.0)
    events: list[SessionEvent] = []
    engine.tracker.add_listener(events.append)

    await engine.start()
    cloud.push(0, 1000.0, 0.0, 60.0)
    cloud.push(1, 1010.0, -20.0, 62.0)
    cloud.push(2, 1030.0, -20.0, 65.0)
    assert engine.tracker.state is TrackerState.CHARGING
    await engine.stop()

    assert [event.type for event in events] == [
        SessionEventType.STARTED,
        SessionEventType.UPDATED,
        SessionEventType.COMPLETED,
    ]
    session, samples = sink.sessions[0]
    assert session.start_cumulative_charge == 1000.0
    assert session.end_cumulative_charge == 1030.0
    assert session.distance_since_last_charge_km == pytest.approx(100.0)
    assert len(samples) == 2
    assert engine.tracker.previous_end_odometer == 15000.0
    assert not cloud.is_connected


@pytest.mark.asyncio
async def test_engine_rebaselines_session_on_failover() -> None:
    cloud, mock = _ScriptedCloud(), _ScriptedMock()
    engine = TelemetryEngine([cloud, mock])
    await engine.start()
    try:
        cloud.push(0, 1000.0, 0.0, 60.0)
        cloud.push(1, 1010.0, -20.0, 62.0)

        cloud.drop()
        assert engine.active_source is DataSource.MOCK
        mock.push(2, 2015.0, -20.0, 63.0)

        session = engine.tracker.active_session
        assert session is not None
        assert session.discontinuities == 1
        assert session.start_cumulative_charge == 2005.0
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_engine_without_sources() -> None:
    engine = TelemetryEngine([_ScriptedCloud(available=False)])

    assert await engine.start() is None
    with pytest.raises(ProviderError):
        engine.require_source()
    await engine.stop()
    assert not engine.is_running
