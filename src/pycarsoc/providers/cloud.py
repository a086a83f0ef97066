"""Vehicle-info API provider: periodic fetch over a :class:`VehicleInfoTransport`."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from pycarsoc._transport import VehicleInfoTransport
from pycarsoc.exceptions import CarSocTransportError
from pycarsoc.ingestion.cloud import DEFAULT_FULL_RANGE_KM, CloudVehicleInfo
from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.providers.base import DataSource, DataSourceProvider


class CloudProvider(DataSourceProvider):
    """Fetches vehicle info every *interval* seconds.

    A transport error marks the provider disconnected; the fetch loop
    keeps retrying and marks it connected again on the next success.
    """

    source = DataSource.CLOUD

    def __init__(
        self,
        transport: VehicleInfoTransport,
        *,
        interval: float = 60.0,
        full_range_km: float = DEFAULT_FULL_RANGE_KM,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        self._transport = transport
        self._interval = interval
        self._full_range_km = full_range_km
        self._task: asyncio.Task[None] | None = None

    async def fetch(self) -> TelemetrySnapshot | None:
        """Fetch once; publish and return the snapshot, or ``None`` on transport error."""
        try:
            payload = await self._transport.fetch_vehicle_info()
        except CarSocTransportError as exc:
            self._logger.warning("Vehicle info fetch failed: %s", exc)
            self._set_connected(False)
            return None
        snapshot = CloudVehicleInfo.model_validate(payload).to_snapshot(full_range_km=self._full_range_km)
        self._set_connected(True)
        self._publish(snapshot)
        return snapshot

    async def connect(self) -> bool:
        if self._task is not None and not self._task.done():
            return self.is_connected
        await self.fetch()
        self._task = asyncio.create_task(self._run(), name="pycarsoc-cloud")
        return self.is_connected

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.fetch()
            except Exception:
                # Keep fetching; the next success reconnects.
                self._logger.exception("Vehicle info fetch raised")
                self._set_connected(False)

    async def disconnect(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._set_connected(False)
