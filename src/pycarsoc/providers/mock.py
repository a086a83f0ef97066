"""Synthetic telemetry for demos and tests: a parked vehicle at ~72 % SOC."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from datetime import UTC, datetime

from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.providers.base import DataSource, DataSourceProvider

_BASE_SOC = 72.0
_BASE_VOLTAGE = 392.0
_BASE_TEMPERATURE = 28.0
_BASE_ODOMETER = 14850.0
_KM_PER_SOC_PERCENT = 4.5


class MockProvider(DataSourceProvider):
    """Publishes a noisy parked-vehicle snapshot every *interval* seconds."""

    source = DataSource.MOCK

    def __init__(
        self,
        *,
        interval: float = 3.0,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        self._interval = interval
        self._rng = rng or random.Random()
        self._task: asyncio.Task[None] | None = None

    def generate(self) -> TelemetrySnapshot:
        rng = self._rng
        soc = _BASE_SOC + (rng.random() - 0.5) * 0.2
        voltage = _BASE_VOLTAGE + (rng.random() - 0.5) * 2.0
        temperature = _BASE_TEMPERATURE + (rng.random() - 0.5) * 1.0
        estimated_range = soc * _KM_PER_SOC_PERCENT
        return TelemetrySnapshot(
            timestamp=datetime.now(UTC),
            state_of_charge=soc,
            state_of_health=98.5,
            battery_capacity=87.5,
            battery_voltage=voltage,
            battery_current=0.0,
            battery_temperature=temperature,
            range=estimated_range,
            speed=0.0,
            odometer=_BASE_ODOMETER,
            power=0.0,
            cumulative_charge=4250.0,
            cumulative_discharge=4180.0,
            extra={
                "HV_T_MAX": temperature + 2.0,
                "HV_T_MIN": temperature - 2.0,
                "CHARGING": 0,
                "BMS_CHG_STATUS": 0,
                "RANGE_EST": estimated_range,
                "AUX_V": 12.8 + (rng.random() - 0.5) * 0.2,
            },
        )

    async def connect(self) -> bool:
        if self._task is None or self._task.done():
            self._set_connected(True)
            self._publish(self.generate())
            self._task = asyncio.create_task(self._run(), name="pycarsoc-mock")
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._publish(self.generate())

    async def disconnect(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._set_connected(False)
