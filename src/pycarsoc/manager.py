"""Data source arbitration.

:class:`DataSourceManager` owns a ranked set of providers, keeps exactly
one upstream subscription to the best connected one, and republishes its
snapshots as a single stream.  ``None`` on that stream means "no
provider connected", a normal state rather than an error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from pycarsoc.config import TelemetryConfig
from pycarsoc.exceptions import CarSocConfigError
from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.providers.base import DataSource, DataSourceProvider, Subscription
from pycarsoc.providers.obd import ObdProvider
from pycarsoc.sinks import TelemetrySink

_logger = logging.getLogger(__name__)

# Extension key carrying the 12 V auxiliary battery voltage.
AUX_VOLTAGE_KEY = "AUX_V"

SnapshotListener = Callable[[TelemetrySnapshot | None], None]
SourceListener = Callable[[DataSource | None, DataSource | None], None]
"""Called with ``(previous, current)`` whenever the active source changes."""


def _removal(callbacks: list[Any], callback: Any) -> Subscription:
    def _cancel() -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    return Subscription(_cancel)


class DataSourceManager:
    """Selects the active provider and exposes one telemetry stream with failover."""

    def __init__(
        self,
        providers: Iterable[DataSourceProvider],
        *,
        ranking: Sequence[DataSource | str] | None = None,
        sink: TelemetrySink | None = None,
        config: TelemetryConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config or TelemetryConfig()
        self._logger = logger or _logger
        self._providers: dict[DataSource, DataSourceProvider] = {}
        for provider in providers:
            if provider.source in self._providers:
                raise CarSocConfigError(f"Duplicate provider for source {provider.source.value!r}")
            self._providers[provider.source] = provider

        order = [DataSource(item) for item in (ranking or self._config.source_ranking)]
        # Providers missing from the ranking rank last, in registration order.
        order.extend(source for source in self._providers if source not in order)
        self._ranking: tuple[DataSource, ...] = tuple(source for source in order if source in self._providers)

        self._sink = sink
        self._active: DataSourceProvider | None = None
        self._subscription: Subscription | None = None
        self._pinned: DataSource | None = None
        self._latest: TelemetrySnapshot | None = None
        self._listeners: list[SnapshotListener] = []
        self._source_listeners: list[SourceListener] = []
        self._aux_protection_active = False
        self._connectivity_subscriptions = [
            provider.add_connectivity_listener(self._on_connectivity) for provider in self._providers.values()
        ]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def ranking(self) -> tuple[DataSource, ...]:
        return self._ranking

    @property
    def active_source(self) -> DataSource | None:
        return self._active.source if self._active is not None else None

    @property
    def active_provider(self) -> DataSourceProvider | None:
        return self._active

    @property
    def latest(self) -> TelemetrySnapshot | None:
        """Last republished snapshot, ``None`` while no provider is connected."""
        return self._latest

    @property
    def aux_protection_active(self) -> bool:
        return self._aux_protection_active

    def provider(self, source: DataSource | str) -> DataSourceProvider | None:
        return self._providers.get(DataSource(source))

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: SnapshotListener) -> Subscription:
        """Receive every republished snapshot, or ``None`` when no source is connected."""
        self._listeners.append(callback)
        return _removal(self._listeners, callback)

    def add_source_listener(self, callback: SourceListener) -> Subscription:
        self._source_listeners.append(callback)
        return _removal(self._source_listeners, callback)

    def _emit(self, snapshot: TelemetrySnapshot | None) -> None:
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception:
                self._logger.exception("Telemetry listener failed")

    def _emit_source_changed(self, previous: DataSource | None, current: DataSource | None) -> None:
        for callback in list(self._source_listeners):
            try:
                callback(previous, current)
            except Exception:
                self._logger.exception("Source listener failed")

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _select(self) -> DataSourceProvider | None:
        if self._pinned is not None:
            pinned = self._providers.get(self._pinned)
            if pinned is not None and pinned.is_connected:
                return pinned
        for source in self._ranking:
            provider = self._providers[source]
            if provider.is_connected:
                return provider
        return None

    def initialize(self) -> DataSource | None:
        """Select the best connected provider; a no-op when it is already active.

        Tears down the previous subscription before subscribing to the
        new provider, so exactly one upstream subscription exists.
        """
        candidate = self._select()
        if candidate is self._active and (candidate is None or self._subscription is not None):
            return self.active_source

        previous = self._active
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._aux_protection_active and isinstance(previous, ObdProvider):
            previous.resume()
            self._aux_protection_active = False

        self._active = candidate
        if candidate is None:
            self._logger.warning("No data source connected")
            self._latest = None
            self._emit(None)
        else:
            self._logger.info("Active data source: %s", candidate.source.value)
            self._subscription = candidate.subscribe(self._on_snapshot)

        self._emit_source_changed(
            previous.source if previous is not None else None,
            self.active_source,
        )
        return self.active_source

    def switch_to(self, source: DataSource | str | None) -> bool:
        """Prefer *source* over the ranking while it stays connected.

        ``None`` returns to ranking order.  Returns ``False`` when the
        source is unknown or not connected.
        """
        if source is None:
            self._pinned = None
            self.initialize()
            return True
        target = DataSource(source)
        provider = self._providers.get(target)
        if provider is None or not provider.is_connected:
            self._logger.info("Cannot switch to %s: not connected", target.value)
            return False
        self._pinned = target
        self.initialize()
        return True

    def _on_connectivity(self, provider: DataSourceProvider, connected: bool) -> None:
        if not connected and provider is self._active:
            self._logger.info("Active source %s disconnected; re-selecting", provider.source.value)
            self.initialize()
        elif connected and self._active is None:
            self.initialize()

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    @staticmethod
    def sanitize(snapshot: TelemetrySnapshot) -> TelemetrySnapshot:
        """Drop physically impossible values (SOC above 100 %)."""
        soc = snapshot.state_of_charge
        if soc is not None and soc > 100.0:
            _logger.debug("Discarding state of charge %.1f%% > 100%%", soc)
            return snapshot.with_updates(state_of_charge=None)
        return snapshot

    def _on_snapshot(self, snapshot: TelemetrySnapshot) -> None:
        cleaned = self.sanitize(snapshot)
        self._latest = cleaned
        if self._sink is not None:
            try:
                self._sink.publish(cleaned)
            except Exception:
                self._logger.exception("Sink publish failed")
        self._emit(cleaned)
        aux = cleaned.get_extra_float(AUX_VOLTAGE_KEY)
        if aux is not None:
            self.report_aux_voltage(aux)

    def report_aux_voltage(self, voltage: float) -> None:
        """Apply 12 V battery protection to the adapter provider.

        Polling pauses below the threshold and resumes once the voltage
        recovers to threshold + hysteresis.  Readings may come from the
        adapter itself or from an external battery monitor.
        """
        cfg = self._config
        provider = self._active
        if not cfg.aux_protection_enabled or not isinstance(provider, ObdProvider):
            return
        if not self._aux_protection_active:
            if voltage < cfg.aux_voltage_threshold:
                self._aux_protection_active = True
                provider.pause()
                self._logger.warning(
                    "12V battery protection active: %.2fV < %.1fV, adapter polling paused",
                    voltage,
                    cfg.aux_voltage_threshold,
                )
            return
        resume_at = cfg.aux_voltage_threshold + cfg.aux_voltage_hysteresis
        if voltage >= resume_at:
            self._aux_protection_active = False
            provider.resume()
            self._logger.info("12V battery recovered: %.2fV >= %.1fV, adapter polling resumed", voltage, resume_at)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> DataSource | None:
        """Connect every provider in ranking order, then select the active one."""
        for source in self._ranking:
            provider = self._providers[source]
            connected = await provider.connect()
            self._logger.debug("Provider %s connect -> %s", source.value, connected)
        return self.initialize()

    async def aclose(self) -> None:
        """Cancel the subscription and disconnect every provider."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        for subscription in self._connectivity_subscriptions:
            subscription.cancel()
        self._connectivity_subscriptions = []
        self._active = None
        await asyncio.gather(*(provider.disconnect() for provider in self._providers.values()))
