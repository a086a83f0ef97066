from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import aiohttp
import pytest

from pycarsoc._transport import HttpVehicleInfoTransport
from pycarsoc.exceptions import CarSocTransportError
from pycarsoc.ingestion.cloud import CloudVehicleInfo
from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.providers.cloud import CloudProvider

_PROPERTIES = {
    "PERF_VEHICLE_SPEED": "0",
    "PERF_ODOMETER": 14850000,
    "EV_BATTERY_LEVEL": 63000,
    "INFO_EV_BATTERY_CAPACITY": 87500,
}


def test_vehicle_info_properties_convert_units() -> None:
    info = CloudVehicleInfo.model_validate(_PROPERTIES)
    snapshot = info.to_snapshot(timestamp=datetime(2026, 1, 1, tzinfo=UTC))

    assert snapshot.state_of_charge == pytest.approx(72.0)
    assert snapshot.odometer == pytest.approx(14850.0)
    assert snapshot.battery_capacity == pytest.approx(87.5)
    assert snapshot.speed == 0.0
    assert snapshot.range == pytest.approx(288.0)


def test_vehicle_info_prefers_explicit_values() -> None:
    info = CloudVehicleInfo.model_validate(
        {"stateOfCharge": 104, "odometer": 120.5, "odometerMeters": 999000, "range": 310, "speed": "--"}
    )

    assert info.soc == 100.0
    assert info.odometer == 120.5
    assert info.speed is None
    assert info.to_snapshot().range == 310.0


def test_vehicle_info_without_capacity_has_no_soc() -> None:
    info = CloudVehicleInfo.model_validate({"EV_BATTERY_LEVEL": 40000, "INFO_EV_BATTERY_CAPACITY": 0})

    assert info.soc is None
    assert info.to_snapshot().range is None


class _FakeInfoTransport:
    def __init__(self) -> None:
        self.payloads: list[dict[str, Any] | Exception] = []

    async def fetch_vehicle_info(self) -> dict[str, Any]:
        item = self.payloads.pop(0) if self.payloads else _PROPERTIES
        if isinstance(item, Exception):
            raise item
        return item


@pytest.mark.asyncio
async def test_cloud_provider_tracks_connectivity_from_fetches() -> None:
    transport = _FakeInfoTransport()
    transport.payloads = [_PROPERTIES, CarSocTransportError("HTTP 503", status_code=503), _PROPERTIES]
    provider = CloudProvider(transport, interval=3600)
    received: list[TelemetrySnapshot] = []
    provider.subscribe(received.append)

    assert await provider.connect() is True
    try:
        assert len(received) == 1
        assert received[0].state_of_charge == pytest.approx(72.0)

        assert await provider.fetch() is None
        assert not provider.is_connected

        assert await provider.fetch() is not None
        assert provider.is_connected
        assert len(received) == 2
    finally:
        await provider.disconnect()

    assert not provider.is_connected


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_cloud_provider_survives_fetch_timeouts() -> None:
    transport = _FakeInfoTransport()
    transport.payloads = [_PROPERTIES, TimeoutError(), TimeoutError()]
    provider = CloudProvider(transport, interval=0.01)
    transitions: list[bool] = []
    provider.add_connectivity_listener(lambda _provider, connected: transitions.append(connected))

    await provider.connect()
    try:
        await _wait_for(lambda: transitions[-2:] == [False, True])
        assert provider.is_connected
        assert transitions == [True, False, True]
    finally:
        await provider.disconnect()


@pytest.mark.asyncio
async def test_cloud_provider_connect_fails_on_transport_error() -> None:
    transport = _FakeInfoTransport()
    transport.payloads = [CarSocTransportError("offline")]
    provider = CloudProvider(transport, interval=3600)

    try:
        assert await provider.connect() is False
    finally:
        await provider.disconnect()


class _FakeResponse:
    def __init__(self, status: int, text: str) -> None:
        self.status = status
        self._text = text

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def text(self) -> str:
        return self._text


class _FakeSession:
    def __init__(self, response: _FakeResponse | Exception) -> None:
        self._response = response
        self.requests: list[tuple[str, dict[str, str]]] = []

    def get(self, url: str, *, headers: dict[str, str]) -> _FakeResponse:
        self.requests.append((url, headers))
        if isinstance(self._response, Exception):
            raise self._response
        return self._response


def _http(response: _FakeResponse | Exception) -> tuple[HttpVehicleInfoTransport, _FakeSession]:
    session = _FakeSession(response)
    transport = HttpVehicleInfoTransport(session, "https://gateway.example/", token="abc")  # type: ignore[arg-type]
    return transport, session


@pytest.mark.asyncio
async def test_http_transport_unwraps_data_envelope() -> None:
    transport, session = _http(_FakeResponse(200, '{"data": {"PERF_ODOMETER": 1000}}'))

    assert await transport.fetch_vehicle_info() == {"PERF_ODOMETER": 1000}
    url, headers = session.requests[0]
    assert url == "https://gateway.example/vehicle/info"
    assert headers["authorization"] == "Bearer abc"


@pytest.mark.asyncio
async def test_http_transport_returns_plain_object() -> None:
    transport, _ = _http(_FakeResponse(200, '{"soc": 55}'))

    assert await transport.fetch_vehicle_info() == {"soc": 55}


@pytest.mark.asyncio
async def test_http_transport_errors() -> None:
    transport, _ = _http(_FakeResponse(502, "bad gateway"))
    with pytest.raises(CarSocTransportError) as exc_info:
        await transport.fetch_vehicle_info()
    assert exc_info.value.status_code == 502
    assert exc_info.value.endpoint == "/vehicle/info"

    transport, _ = _http(_FakeResponse(200, "not json"))
    with pytest.raises(CarSocTransportError, match="Invalid JSON"):
        await transport.fetch_vehicle_info()

    transport, _ = _http(_FakeResponse(200, "[1, 2]"))
    with pytest.raises(CarSocTransportError, match="JSON object"):
        await transport.fetch_vehicle_info()

    transport, _ = _http(aiohttp.ClientConnectionError("refused"))
    with pytest.raises(CarSocTransportError) as exc_info:
        await transport.fetch_vehicle_info()
    assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)


@pytest.mark.asyncio
async def test_http_transport_wraps_timeouts() -> None:
    transport, _ = _http(TimeoutError())

    with pytest.raises(CarSocTransportError) as exc_info:
        await transport.fetch_vehicle_info()

    assert exc_info.value.endpoint == "/vehicle/info"
    assert isinstance(exc_info.value.__cause__, TimeoutError)
