from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from pycarsoc.config import TelemetryConfig
from pycarsoc.exceptions import AdapterDisconnectedError, CarSocTransportError
from pycarsoc.models.pid import PidDescriptor, PidPriority, PidType
from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.profiles import STANDARD_PIDS, XPENG_G6
from pycarsoc.providers.base import DataSourceProvider
from pycarsoc.providers.obd import ObdProvider, detect_vehicle_init

_SOC = PidDescriptor(
    name="SOC", pid="221109", type=PidType.STATE_OF_CHARGE, formula="[B4:B5]/10", header="704"
)
_SOH = PidDescriptor(
    name="SOH", pid="22110A", type=PidType.CUSTOM, formula="[B4:B5]/10", header="704", priority=PidPriority.LOW
)
_SPEED = PidDescriptor(name="Speed", pid="220104", type=PidType.SPEED, formula="[B4:B5]/100", header="7E0")

_RESPONSES = {
    "221109": "784 05 62 11 09 02 D0",
    "22110A": "784 05 62 11 0A 03 D4",
    "220104": "7E8 05 62 01 04 00 00",
}


class _FakeAdapter:
    def __init__(self, responses: dict[str, str] | None = None) -> None:
        self.responses = responses or {}
        self.sent: list[str] = []
        self.is_open = False
        self.drop_on: str | None = None
        self.fail_open = False

    async def open(self) -> None:
        if self.fail_open:
            raise CarSocTransportError("no adapter")
        self.is_open = True

    async def close(self) -> None:
        self.is_open = False

    async def send(self, command: str) -> str:
        if not self.is_open:
            raise AdapterDisconnectedError("closed", command=command)
        self.sent.append(command)
        if command == self.drop_on:
            self.drop_on = None
            self.is_open = False
            raise AdapterDisconnectedError("link lost", command=command)
        if command.startswith("AT"):
            return "OK"
        return self.responses.get(command, "NO DATA")


def _config(**overrides: object) -> TelemetryConfig:
    values: dict[str, object] = {
        "poll_interval": 0.01,
        "low_priority_period": 2,
        "inter_command_delay": 0.0,
        "header_switch_delay": 0.0,
        "adapter_reset_delay": 0.0,
        "reconnect_base_delay": 0.01,
    }
    values.update(overrides)
    return TelemetryConfig(**values)  # type: ignore[arg-type]


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture(autouse=True)
def _no_wakeup_settle(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("pycarsoc.providers.obd._WAKEUP_SETTLE_DELAY", 0.0)


def test_detect_vehicle_init() -> None:
    vehicle, commands = detect_vehicle_init(XPENG_G6.pids)
    assert vehicle == "XPENG G6"
    assert "ATSH704" in commands

    assert detect_vehicle_init(STANDARD_PIDS) == (None, [])
    assert detect_vehicle_init([]) == (None, [])

    extended = [PidDescriptor(name="X", pid="22F190")]
    assert detect_vehicle_init(extended) == ("extended PIDs", ["ATSP6", "ATFCSM1"])


def test_from_profile_uses_profile_init() -> None:
    provider = ObdProvider.from_profile(_FakeAdapter(), XPENG_G6)

    assert provider.init_commands == tuple(XPENG_G6.init_commands)
    assert provider.pids == XPENG_G6.pids


@pytest.mark.asyncio
async def test_connect_initializes_adapter_and_tracks_header() -> None:
    adapter = _FakeAdapter(_RESPONSES)
    provider = ObdProvider(adapter, [_SOC, _SOH, _SPEED], config=_config())

    assert await provider.connect() is True
    try:
        assert adapter.sent[:3] == ["ATZ", "ATE0", "ATS0"]
        assert adapter.sent[3] == "ATH1"
        assert adapter.sent[-5:] == ["ATAL", "ATCFC1", "ATFCSD300000", "ATFCSM1", "ATDPN"]
        assert provider.current_header == "704"
        assert provider.is_connected
    finally:
        await provider.disconnect()

    assert not provider.is_connected
    assert not adapter.is_open


@pytest.mark.asyncio
async def test_standard_pids_use_auto_protocol() -> None:
    adapter = _FakeAdapter()
    provider = ObdProvider(adapter, STANDARD_PIDS, config=_config())

    await provider.connect()
    await provider.disconnect()

    assert "ATSP0" in adapter.sent
    assert provider.current_header is None


@pytest.mark.asyncio
async def test_connect_failure_reports_disconnected() -> None:
    adapter = _FakeAdapter()
    adapter.fail_open = True
    provider = ObdProvider(adapter, [_SOC], config=_config())

    assert await provider.connect() is False
    assert not provider.is_connected


@pytest.mark.asyncio
async def test_poll_switches_headers_only_when_needed() -> None:
    adapter = _FakeAdapter(_RESPONSES)
    await adapter.open()
    provider = ObdProvider(adapter, [_SOC, _SOH, _SPEED], config=_config())
    received: list[TelemetrySnapshot] = []
    provider.subscribe(received.append)

    snapshot = await provider.poll_once()

    assert adapter.sent == [
        "ATSH704",
        "ATCRA784",
        "ATFCSH704",
        "221109",
        "22110A",
        "ATSH7E0",
        "ATCRA7E8",
        "ATFCSH7E0",
        "220104",
    ]
    assert snapshot.state_of_charge == pytest.approx(72.0)
    assert snapshot.state_of_health == pytest.approx(98.0)
    assert snapshot.speed == 0.0
    assert received == [snapshot]
    assert provider.last_snapshot is snapshot


@pytest.mark.asyncio
async def test_low_priority_values_are_cached_between_polls() -> None:
    adapter = _FakeAdapter(_RESPONSES)
    await adapter.open()
    provider = ObdProvider(adapter, [_SOC, _SOH, _SPEED], config=_config())

    first = await provider.poll_once()
    adapter.sent.clear()
    second = await provider.poll_once()

    assert "22110A" not in adapter.sent
    assert second.state_of_health == pytest.approx(98.0)
    assert second.extra["lowPriorityLastUpdated"] == first.extra["lowPriorityLastUpdated"]


@pytest.mark.asyncio
async def test_repeated_failures_in_first_cycles_wake_ecus_once() -> None:
    adapter = _FakeAdapter()
    await adapter.open()
    provider = ObdProvider(adapter, [_SOC, _SOH, _SPEED], config=_config(ecu_wakeup_error_threshold=2))

    snapshot = await provider.poll_once()

    assert snapshot.state_of_charge is None
    assert adapter.sent[-4:] == ["ATSH704", "221109", "ATSH7E0", "220104"]
    assert provider.current_header is None

    adapter.sent.clear()
    await provider.poll_once()
    assert adapter.sent.count("ATSH704") == 1


@pytest.mark.asyncio
async def test_link_loss_during_cycle_raises() -> None:
    adapter = _FakeAdapter(_RESPONSES)
    await adapter.open()
    adapter.drop_on = "22110A"
    provider = ObdProvider(adapter, [_SOC, _SOH, _SPEED], config=_config())

    with pytest.raises(AdapterDisconnectedError):
        await provider.poll_once()


def test_reconnect_backoff_doubles() -> None:
    provider = ObdProvider(_FakeAdapter(), [_SOC], config=TelemetryConfig())

    assert [provider.reconnect_delay(attempt) for attempt in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]


@pytest.mark.asyncio
async def test_link_loss_reconnects_automatically() -> None:
    adapter = _FakeAdapter(_RESPONSES)
    adapter.drop_on = "221109"
    provider = ObdProvider(adapter, [_SOC, _SOH, _SPEED], config=_config())
    transitions: list[bool] = []

    def _on_connectivity(_provider: DataSourceProvider, connected: bool) -> None:
        transitions.append(connected)

    provider.add_connectivity_listener(_on_connectivity)

    await provider.connect()
    try:
        await _wait_for(lambda: transitions == [True, False, True])
        await _wait_for(lambda: provider.last_snapshot is not None)
    finally:
        await provider.disconnect()

    assert transitions == [True, False, True, False]
    assert not provider.is_reconnecting


@pytest.mark.asyncio
async def test_paused_provider_stops_polling() -> None:
    adapter = _FakeAdapter(_RESPONSES)
    provider = ObdProvider(adapter, [_SOC], config=_config())
    provider.pause()

    await provider.connect()
    try:
        adapter.sent.clear()
        await asyncio.sleep(0.05)
        assert "221109" not in adapter.sent
        assert provider.is_paused

        provider.resume()
        await _wait_for(lambda: "221109" in adapter.sent)
    finally:
        await provider.disconnect()
