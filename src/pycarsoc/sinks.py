"""Telemetry/session sinks: the persistence and publication boundary."""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Sequence
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from pycarsoc.models.charging import ChargingSample, ChargingSession
from pycarsoc.models.telemetry import TelemetrySnapshot


class TelemetrySink(Protocol):
    """Receives every published snapshot and every completed session."""

    def publish(self, snapshot: TelemetrySnapshot) -> None: ...

    def archive(self, session: ChargingSession, samples: Sequence[ChargingSample]) -> None: ...


class MemorySink:
    """Keeps the most recent snapshots and all archived sessions in memory."""

    def __init__(self, max_snapshots: int = 1000) -> None:
        self.snapshots: deque[TelemetrySnapshot] = deque(maxlen=max_snapshots)
        self.sessions: list[tuple[ChargingSession, list[ChargingSample]]] = []

    def publish(self, snapshot: TelemetrySnapshot) -> None:
        self.snapshots.append(snapshot)

    def archive(self, session: ChargingSession, samples: Sequence[ChargingSample]) -> None:
        self.sessions.append((session, list(samples)))


class MqttSink:
    """Publishes telemetry and completed sessions over MQTT (paho-mqtt).

    Topics:

    * ``<prefix>/vehicle`` - one JSON snapshot per publish
    * ``<prefix>/charging/session`` - retained, last completed session
      with its sample curve
    """

    def __init__(
        self,
        host: str,
        port: int = 1883,
        *,
        topic_prefix: str = "carsoc",
        client_id: str = "",
        username: str | None = None,
        password: str | None = None,
        tls: bool = False,
        keepalive: int = 60,
        client: mqtt.Client | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._prefix = topic_prefix.rstrip("/")
        self._client_id = client_id
        self._username = username
        self._password = password
        self._tls = tls
        self._keepalive = keepalive
        self._client = client
        self._owns_client = client is None
        self._logger = logger or logging.getLogger(__name__)
        self._running = False

    @property
    def vehicle_topic(self) -> str:
        return f"{self._prefix}/vehicle"

    @property
    def session_topic(self) -> str:
        return f"{self._prefix}/charging/session"

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Connect and start the paho network loop thread."""
        if self._running:
            return
        client = self._client
        if client is None:
            client = mqtt.Client(
                callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
                client_id=self._client_id,
                protocol=mqtt.MQTTv5,
            )
            client.enable_logger(self._logger)
            if self._username:
                client.username_pw_set(self._username, self._password)
            if self._tls:
                client.tls_set()

            def on_connect(
                _client: mqtt.Client,
                _userdata: Any,
                _flags: Any,
                reason_code: Any,
                _properties: Any,
            ) -> None:
                if reason_code.value != 0:
                    self._logger.warning("MQTT connect failed: %s", reason_code)
                    return
                self._logger.debug("MQTT connected to %s:%s", self._host, self._port)

            client.on_connect = on_connect
            self._client = client

        self._logger.debug("MQTT sink connecting host=%s port=%s", self._host, self._port)
        client.connect(self._host, self._port, keepalive=self._keepalive)
        client.loop_start()
        self._running = True

    def stop(self) -> None:
        client = self._client
        was_running = self._running
        self._running = False
        if client is None:
            return
        if self._owns_client:
            self._client = None
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT sink stopped")

    def _send(self, topic: str, payload: dict[str, Any], *, retain: bool = False) -> None:
        if self._client is None or not self._running:
            self._logger.debug("MQTT sink not running; dropping message for %s", topic)
            return
        info = self._client.publish(topic, json.dumps(payload), qos=1 if retain else 0, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("MQTT publish to %s failed rc=%s", topic, info.rc)

    def publish(self, snapshot: TelemetrySnapshot) -> None:
        self._send(self.vehicle_topic, snapshot.to_wire())

    def archive(self, session: ChargingSession, samples: Sequence[ChargingSample]) -> None:
        payload = session.to_wire()
        payload["samples"] = [sample.to_record() for sample in samples]
        self._send(self.session_topic, payload, retain=True)
