from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import paho.mqtt.client as mqtt

from pycarsoc.models.charging import ChargingSample, ChargingSession
from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.sinks import MemorySink, MqttSink

_TS = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


@dataclass
class _PublishInfo:
    rc: int


class _FakeMqttClient:
    def __init__(self, rc: int = mqtt.MQTT_ERR_SUCCESS) -> None:
        self.rc = rc
        self.calls: list[str] = []
        self.published: list[tuple[str, dict[str, Any], int, bool]] = []

    def connect(self, host: str, port: int, keepalive: int = 60) -> None:
        self.calls.append(f"connect {host}:{port}")

    def loop_start(self) -> None:
        self.calls.append("loop_start")

    def loop_stop(self) -> None:
        self.calls.append("loop_stop")

    def disconnect(self) -> None:
        self.calls.append("disconnect")

    def publish(self, topic: str, payload: str, qos: int = 0, retain: bool = False) -> _PublishInfo:
        self.published.append((topic, json.loads(payload), qos, retain))
        return _PublishInfo(self.rc)


def _session() -> ChargingSession:
    return ChargingSession(
        id="charge_1",
        start_time=_TS,
        end_time=_TS.replace(hour=13),
        start_cumulative_charge=1000.0,
        end_cumulative_charge=1050.0,
        start_soc=60.0,
        end_soc=80.0,
        is_active=False,
    )


def _sink(client: _FakeMqttClient) -> MqttSink:
    return MqttSink("broker.local", topic_prefix="garage/car/", client=client)  # type: ignore[arg-type]


def test_mqtt_sink_publishes_snapshots_and_sessions() -> None:
    client = _FakeMqttClient()
    sink = _sink(client)
    sink.start()

    sink.publish(TelemetrySnapshot(timestamp=_TS, state_of_charge=72.0, extra={"AUX_V": 12.6}))
    sample = ChargingSample(timestamp=_TS, soc=61.0, power_kw=7.2)
    sink.archive(_session(), [sample])

    assert client.calls == ["connect broker.local:1883", "loop_start"]
    (topic, payload, qos, retain), (session_topic, session_payload, session_qos, session_retain) = client.published
    assert topic == "garage/car/vehicle"
    assert payload["stateOfCharge"] == 72.0
    assert payload["AUX_V"] == 12.6
    assert (qos, retain) == (0, False)

    assert session_topic == "garage/car/charging/session"
    assert session_payload["id"] == "charge_1"
    assert len(session_payload["samples"]) == 1
    assert session_payload["samples"][0]["soc"] == 61.0
    assert (session_qos, session_retain) == (1, True)


def test_mqtt_sink_drops_messages_when_not_running() -> None:
    client = _FakeMqttClient()
    sink = _sink(client)

    sink.publish(TelemetrySnapshot(timestamp=_TS))

    assert client.published == []


def test_mqtt_sink_tolerates_failed_publish() -> None:
    client = _FakeMqttClient(rc=mqtt.MQTT_ERR_NO_CONN)
    sink = _sink(client)
    sink.start()

    sink.publish(TelemetrySnapshot(timestamp=_TS))

    assert len(client.published) == 1


def test_mqtt_sink_stop_keeps_injected_client() -> None:
    client = _FakeMqttClient()
    sink = _sink(client)
    sink.start()
    sink.stop()

    assert not sink.is_running
    assert client.calls[-2:] == ["disconnect", "loop_stop"]

    sink.start()
    assert sink.is_running


def test_memory_sink_keeps_recent_snapshots() -> None:
    sink = MemorySink(max_snapshots=2)
    for soc in (1.0, 2.0, 3.0):
        sink.publish(TelemetrySnapshot(timestamp=_TS, state_of_charge=soc))
    sink.archive(_session(), ())

    assert [snap.state_of_charge for snap in sink.snapshots] == [2.0, 3.0]
    assert sink.sessions[0][0].id == "charge_1"
    assert sink.sessions[0][1] == []
