"""Normalization of vehicle-info (cloud / head-unit property) payloads."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from pycarsoc.ingestion.normalize import safe_float
from pycarsoc.models._base import CarSocBaseModel
from pycarsoc.models.telemetry import TelemetrySnapshot

# Rated range used to estimate remaining range from SOC when none is reported.
DEFAULT_FULL_RANGE_KM = 400.0


class CloudVehicleInfo(CarSocBaseModel):
    """Vehicle-info properties as reported by the cloud / head-unit API.

    Odometer arrives in metres and battery energy in Wh; both property
    names and camelCase keys are accepted.
    """

    speed: float | None = Field(
        default=None,
        validation_alias=AliasChoices("speed", "vehicleSpeed", "PERF_VEHICLE_SPEED"),
    )
    odometer_m: float | None = Field(
        default=None,
        validation_alias=AliasChoices("odometerMeters", "odometer_m", "PERF_ODOMETER"),
    )
    odometer_km: float | None = Field(
        default=None,
        validation_alias=AliasChoices("odometer", "odometerKm", "odometer_km"),
    )
    battery_level_wh: float | None = Field(
        default=None,
        validation_alias=AliasChoices("batteryLevelWh", "battery_level_wh", "EV_BATTERY_LEVEL"),
    )
    battery_capacity_wh: float | None = Field(
        default=None,
        validation_alias=AliasChoices("batteryCapacityWh", "battery_capacity_wh", "INFO_EV_BATTERY_CAPACITY"),
    )
    state_of_charge: float | None = Field(
        default=None,
        validation_alias=AliasChoices("stateOfCharge", "state_of_charge", "soc"),
    )
    range_km: float | None = Field(
        default=None,
        validation_alias=AliasChoices("range", "rangeKm", "range_km"),
    )

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_float(cls, value: Any) -> float | None:
        return safe_float(value)

    @property
    def soc(self) -> float | None:
        if self.state_of_charge is not None:
            return min(max(self.state_of_charge, 0.0), 100.0)
        level, capacity = self.battery_level_wh, self.battery_capacity_wh
        if level is None or capacity is None or capacity <= 0:
            return None
        return min(max(level / capacity * 100, 0.0), 100.0)

    @property
    def odometer(self) -> float | None:
        if self.odometer_km is not None:
            return self.odometer_km
        return self.odometer_m / 1000 if self.odometer_m is not None else None

    def to_snapshot(
        self,
        *,
        timestamp: datetime | None = None,
        full_range_km: float = DEFAULT_FULL_RANGE_KM,
    ) -> TelemetrySnapshot:
        soc = self.soc
        estimated_range = self.range_km
        if estimated_range is None and soc is not None:
            estimated_range = soc / 100 * full_range_km
        capacity = self.battery_capacity_wh
        return TelemetrySnapshot(
            timestamp=timestamp or datetime.now(UTC),
            state_of_charge=soc,
            battery_capacity=capacity / 1000 if capacity is not None else None,
            range=estimated_range,
            speed=self.speed,
            odometer=self.odometer,
        )
