"""Charging session and per-tick charging sample models."""

from __future__ import annotations

from typing import Any

from pydantic import computed_field, field_validator, model_validator

from pycarsoc.ingestion.normalize import safe_float
from pycarsoc.models._base import CarSocBaseModel, OptionalTimestamp, Timestamp, to_epoch_ms

_COMPUTED_FIELDS = frozenset(
    {
        "energy_added_ah",
        "energy_kwh",
        "soc_gained",
        "duration_seconds",
        "average_charging_rate_ah",
        "distance_since_last_charge_km",
        "consumption_kwh_per_100km",
    }
)


class ChargingSession(CarSocBaseModel):
    """A charging session from charging-begin to charging-end.

    Stored fields are what the tracker observed; energy, distance and
    consumption are derived on read so they can never disagree with
    the stored counters.  Derived values are ``None`` whenever one of
    their inputs is unknown.
    """

    id: str
    start_time: Timestamp
    end_time: OptionalTimestamp = None
    start_cumulative_charge: float
    end_cumulative_charge: float | None = None
    start_soc: float | None = None
    end_soc: float | None = None
    start_odometer: float | None = None
    end_odometer: float | None = None
    is_active: bool = True
    charging_type: str | None = None
    peak_power_kw: float | None = None
    average_voltage: float | None = None
    previous_end_odometer: float | None = None
    discontinuities: int = 0

    @field_validator(
        "end_cumulative_charge",
        "start_soc",
        "end_soc",
        "start_odometer",
        "end_odometer",
        "peak_power_kw",
        "average_voltage",
        "previous_end_odometer",
        mode="before",
    )
    @classmethod
    def _coerce_optional_float(cls, value: Any) -> float | None:
        return safe_float(value)

    @model_validator(mode="after")
    def _check_chronology(self) -> ChargingSession:
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        return self

    # ------------------------------------------------------------------
    # Derived metrics
    # ------------------------------------------------------------------

    @computed_field(alias="energyAddedAh")  # type: ignore[prop-decorator]
    @property
    def energy_added_ah(self) -> float | None:
        if self.end_cumulative_charge is None:
            return None
        return self.end_cumulative_charge - self.start_cumulative_charge

    @computed_field(alias="energyKwh")  # type: ignore[prop-decorator]
    @property
    def energy_kwh(self) -> float | None:
        energy = self.energy_added_ah
        if energy is None or self.average_voltage is None:
            return None
        return energy * self.average_voltage / 1000

    @computed_field(alias="socGained")  # type: ignore[prop-decorator]
    @property
    def soc_gained(self) -> float | None:
        if self.end_soc is None or self.start_soc is None:
            return None
        return self.end_soc - self.start_soc

    @computed_field(alias="durationSeconds")  # type: ignore[prop-decorator]
    @property
    def duration_seconds(self) -> int | None:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds())

    @computed_field(alias="averageChargingRateAh")  # type: ignore[prop-decorator]
    @property
    def average_charging_rate_ah(self) -> float | None:
        """Average rate in Ah per hour."""
        seconds = self.duration_seconds
        energy = self.energy_added_ah
        if not seconds or energy is None:
            return None
        return energy / (seconds / 3600)

    @computed_field(alias="distanceSinceLastChargeKm")  # type: ignore[prop-decorator]
    @property
    def distance_since_last_charge_km(self) -> float | None:
        if self.start_odometer is None or self.previous_end_odometer is None:
            return None
        return self.start_odometer - self.previous_end_odometer

    @computed_field(alias="consumptionKwhPer100km")  # type: ignore[prop-decorator]
    @property
    def consumption_kwh_per_100km(self) -> float | None:
        distance = self.distance_since_last_charge_km
        energy = self.energy_kwh
        if distance is None or energy is None or distance <= 0:
            return None
        return energy / distance * 100

    # ------------------------------------------------------------------
    # Updates and serialisation
    # ------------------------------------------------------------------

    def replace(self, **changes: Any) -> ChargingSession:
        """Return a validated copy with *changes* applied."""
        data = self.model_dump(exclude=set(_COMPUTED_FIELDS))
        data.update(changes)
        return ChargingSession.model_validate(data)

    def to_wire(self) -> dict[str, Any]:
        """JSON form with ISO-8601 timestamps and derived fields included."""
        return self.model_dump(mode="json", by_alias=True)

    def to_record(self) -> dict[str, Any]:
        """Storage form: epoch-ms timestamps, stored fields only."""
        record = self.model_dump(by_alias=True, exclude=set(_COMPUTED_FIELDS))
        record["startTime"] = to_epoch_ms(self.start_time)
        record["endTime"] = to_epoch_ms(self.end_time) if self.end_time is not None else None
        record["isActive"] = 1 if self.is_active else 0
        return record

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> ChargingSession:
        """Inverse of :meth:`to_wire` / :meth:`to_record`; derived keys are ignored."""
        return cls.model_validate(payload)

    from_record = from_wire


class ChargingSample(CarSocBaseModel):
    """One point of a session's charge curve; appended, never mutated."""

    timestamp: Timestamp
    soc: float
    power_kw: float
    temperature: float | None = None
    voltage: float | None = None
    current: float | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "timestamp": to_epoch_ms(self.timestamp),
            "soc": round(self.soc, 2),
            "powerKw": round(self.power_kw, 2),
        }
        if self.temperature is not None:
            record["temperature"] = round(self.temperature, 1)
        if self.voltage is not None:
            record["voltage"] = round(self.voltage, 1)
        if self.current is not None:
            record["current"] = round(self.current, 2)
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ChargingSample:
        return cls.model_validate(record)
