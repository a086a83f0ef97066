"""Top-level runtime: providers → manager → session tracker → sink."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pycarsoc.charging.tracker import ChargingSessionTracker
from pycarsoc.config import TelemetryConfig
from pycarsoc.exceptions import ProviderError
from pycarsoc.manager import DataSourceManager, SnapshotListener
from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.providers.base import DataSource, DataSourceProvider, Subscription
from pycarsoc.sinks import TelemetrySink

_logger = logging.getLogger(__name__)


class TelemetryEngine:
    """Runs the whole pipeline inside ``async with``.

    Example::

        async with TelemetryEngine([obd, cloud, MockProvider()], sink=sink) as engine:
            engine.add_listener(print)
            await asyncio.sleep(3600)

    On exit an in-progress charging session is finalised from the last
    snapshot seen and every provider is disconnected.
    """

    def __init__(
        self,
        providers: Iterable[DataSourceProvider],
        *,
        config: TelemetryConfig | None = None,
        sink: TelemetrySink | None = None,
        previous_end_odometer: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config or TelemetryConfig()
        self._logger = logger or _logger
        self._sink = sink
        self._manager = DataSourceManager(
            providers,
            sink=sink,
            config=self._config,
            logger=self._logger.getChild("manager"),
        )
        self._tracker = ChargingSessionTracker(
            config=self._config,
            sink=sink,
            previous_end_odometer=previous_end_odometer,
            logger=self._logger.getChild("charging"),
        )
        self._last_snapshot: TelemetrySnapshot | None = None
        self._subscriptions: list[Subscription] = []
        self._running = False

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def manager(self) -> DataSourceManager:
        return self._manager

    @property
    def tracker(self) -> ChargingSessionTracker:
        return self._tracker

    @property
    def active_source(self) -> DataSource | None:
        return self._manager.active_source

    @property
    def latest(self) -> TelemetrySnapshot | None:
        return self._manager.latest

    @property
    def is_running(self) -> bool:
        return self._running

    def add_listener(self, callback: SnapshotListener) -> Subscription:
        return self._manager.add_listener(callback)

    def _on_snapshot(self, snapshot: TelemetrySnapshot | None) -> None:
        if snapshot is not None:
            self._last_snapshot = snapshot
        self._tracker.process(snapshot)

    async def start(self) -> DataSource | None:
        if self._running:
            return self.active_source
        self._subscriptions = [
            self._manager.add_source_listener(self._tracker.on_source_changed),
            self._manager.add_listener(self._on_snapshot),
        ]
        self._running = True
        source = await self._manager.start()
        if source is None:
            self._logger.warning("Telemetry engine started without a connected source")
        else:
            self._logger.info("Telemetry engine started on %s", source.value)
        return source

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []
        self._tracker.end_current_session(self._last_snapshot)
        await self._manager.aclose()
        self._logger.info("Telemetry engine stopped")

    async def __aenter__(self) -> TelemetryEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    def require_source(self) -> DataSource:
        """Active source, raising :class:`ProviderError` when none is connected."""
        source = self.active_source
        if source is None:
            raise ProviderError("No data source connected")
        return source
