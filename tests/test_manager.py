from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pycarsoc.config import TelemetryConfig
from pycarsoc.exceptions import CarSocConfigError
from pycarsoc.manager import DataSourceManager
from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.providers.base import DataSource, DataSourceProvider
from pycarsoc.providers.obd import ObdProvider
from pycarsoc.sinks import MemorySink

_TS = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _snapshot(soc: float = 72.0, **extra: float) -> TelemetrySnapshot:
    return TelemetrySnapshot(timestamp=_TS, state_of_charge=soc, extra=extra)


class _FakeCloud(DataSourceProvider):
    source = DataSource.CLOUD

    def __init__(self, *, available: bool = True) -> None:
        super().__init__()
        self.available = available

    async def connect(self) -> bool:
        self._set_connected(self.available)
        return self.available

    async def disconnect(self) -> None:
        self._set_connected(False)

    def push(self, snapshot: TelemetrySnapshot) -> None:
        self._publish(snapshot)

    def link(self, connected: bool) -> None:
        self._set_connected(connected)


class _FakeMock(_FakeCloud):
    source = DataSource.MOCK


class _NullAdapter:
    is_open = False

    async def open(self) -> None:
        self.is_open = True

    async def close(self) -> None:
        self.is_open = False

    async def send(self, command: str) -> str:
        return "OK"


class _FakeObd(ObdProvider):
    def __init__(self) -> None:
        super().__init__(_NullAdapter(), [])

    async def connect(self) -> bool:
        self._set_connected(True)
        return True

    async def disconnect(self) -> None:
        self._set_connected(False)

    def push(self, snapshot: TelemetrySnapshot) -> None:
        self._publish(snapshot)


class _Recorder:
    def __init__(self) -> None:
        self.snapshots: list[TelemetrySnapshot | None] = []
        self.switches: list[tuple[DataSource | None, DataSource | None]] = []

    def on_snapshot(self, snapshot: TelemetrySnapshot | None) -> None:
        self.snapshots.append(snapshot)

    def on_source(self, previous: DataSource | None, current: DataSource | None) -> None:
        self.switches.append((previous, current))


def _manager(*providers: DataSourceProvider, **kwargs: object) -> tuple[DataSourceManager, _Recorder]:
    manager = DataSourceManager(providers, **kwargs)  # type: ignore[arg-type]
    recorder = _Recorder()
    manager.add_listener(recorder.on_snapshot)
    manager.add_source_listener(recorder.on_source)
    return manager, recorder


@pytest.mark.asyncio
async def test_start_selects_best_connected_source() -> None:
    cloud, mock = _FakeCloud(available=False), _FakeMock()
    manager, recorder = _manager(mock, cloud)

    assert manager.ranking == (DataSource.CLOUD, DataSource.MOCK)
    assert await manager.start() is DataSource.MOCK
    assert recorder.switches == [(None, DataSource.MOCK)]


@pytest.mark.asyncio
async def test_initialize_is_idempotent() -> None:
    cloud = _FakeCloud()
    manager, recorder = _manager(cloud)
    await manager.start()

    assert manager.initialize() is DataSource.CLOUD
    assert manager.initialize() is DataSource.CLOUD
    assert cloud.subscriber_count == 1
    assert len(recorder.switches) == 1

    cloud.push(_snapshot())
    assert len(recorder.snapshots) == 1


@pytest.mark.asyncio
async def test_failover_moves_the_single_subscription() -> None:
    cloud, mock = _FakeCloud(), _FakeMock()
    manager, recorder = _manager(cloud, mock)
    await manager.start()

    cloud.link(False)

    assert manager.active_source is DataSource.MOCK
    assert cloud.subscriber_count == 0
    assert mock.subscriber_count == 1
    assert recorder.switches == [(None, DataSource.CLOUD), (DataSource.CLOUD, DataSource.MOCK)]

    cloud.push(_snapshot(50.0))
    mock.push(_snapshot(60.0))
    assert [snap.state_of_charge for snap in recorder.snapshots if snap is not None] == [60.0]


@pytest.mark.asyncio
async def test_no_connected_source_emits_none() -> None:
    cloud = _FakeCloud()
    manager, recorder = _manager(cloud)
    await manager.start()
    cloud.push(_snapshot())

    cloud.link(False)

    assert manager.active_source is None
    assert manager.latest is None
    assert recorder.snapshots[-1] is None

    cloud.link(True)
    assert manager.active_source is DataSource.CLOUD
    assert cloud.subscriber_count == 1


@pytest.mark.asyncio
async def test_higher_ranked_source_does_not_preempt_active_one() -> None:
    cloud, mock = _FakeCloud(available=False), _FakeMock()
    manager, _ = _manager(cloud, mock)
    await manager.start()

    cloud.link(True)

    assert manager.active_source is DataSource.MOCK
    assert manager.initialize() is DataSource.CLOUD


@pytest.mark.asyncio
async def test_switch_to_pins_a_connected_source() -> None:
    cloud, mock = _FakeCloud(), _FakeMock()
    manager, _ = _manager(cloud, mock)
    await manager.start()

    assert manager.switch_to("mock") is True
    assert manager.active_source is DataSource.MOCK
    assert manager.initialize() is DataSource.MOCK

    assert manager.switch_to(DataSource.OBD) is False
    assert manager.active_source is DataSource.MOCK

    assert manager.switch_to(None) is True
    assert manager.active_source is DataSource.CLOUD


@pytest.mark.asyncio
async def test_snapshots_are_sanitized_and_published_to_sink() -> None:
    cloud = _FakeCloud()
    sink = MemorySink()
    manager, recorder = _manager(cloud, sink=sink)
    await manager.start()

    cloud.push(_snapshot(120.0))

    published = recorder.snapshots[-1]
    assert published is not None
    assert published.state_of_charge is None
    assert list(sink.snapshots) == [published]
    assert manager.latest is published


def test_sanitize_keeps_valid_soc() -> None:
    snapshot = _snapshot(100.0)
    assert DataSourceManager.sanitize(snapshot) is snapshot


def test_duplicate_sources_are_rejected() -> None:
    with pytest.raises(CarSocConfigError):
        DataSourceManager([_FakeCloud(), _FakeCloud()])


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_others() -> None:
    cloud = _FakeCloud()
    manager = DataSourceManager([cloud])
    received: list[TelemetrySnapshot | None] = []

    def _boom(_snapshot: TelemetrySnapshot | None) -> None:
        raise RuntimeError("boom")

    manager.add_listener(_boom)
    manager.add_listener(received.append)
    await manager.start()
    cloud.push(_snapshot())

    assert len(received) == 1


@pytest.mark.asyncio
async def test_aux_protection_pauses_and_resumes_adapter() -> None:
    obd = _FakeObd()
    config = TelemetryConfig(aux_protection_enabled=True, aux_voltage_threshold=12.8, aux_voltage_hysteresis=0.3)
    manager, _ = _manager(obd, config=config)
    await manager.start()

    obd.push(_snapshot(AUX_V=12.0))
    assert obd.is_paused
    assert manager.aux_protection_active

    manager.report_aux_voltage(12.9)
    assert obd.is_paused

    manager.report_aux_voltage(13.2)
    assert not obd.is_paused
    assert not manager.aux_protection_active


@pytest.mark.asyncio
async def test_aux_protection_disabled_by_default() -> None:
    obd = _FakeObd()
    manager, _ = _manager(obd)
    await manager.start()

    obd.push(_snapshot(AUX_V=11.5))

    assert not obd.is_paused


@pytest.mark.asyncio
async def test_aux_protection_released_when_adapter_drops() -> None:
    obd, mock = _FakeObd(), _FakeMock()
    manager, _ = _manager(obd, mock, config=TelemetryConfig(aux_protection_enabled=True))
    await manager.start()
    manager.report_aux_voltage(11.0)

    await obd.disconnect()

    assert manager.active_source is DataSource.MOCK
    assert not obd.is_paused
    assert not manager.aux_protection_active


@pytest.mark.asyncio
async def test_aclose_disconnects_everything() -> None:
    cloud, mock = _FakeCloud(), _FakeMock()
    manager, _ = _manager(cloud, mock)
    await manager.start()

    await manager.aclose()

    assert manager.active_source is None
    assert cloud.subscriber_count == 0
    assert not cloud.is_connected
    assert not mock.is_connected
