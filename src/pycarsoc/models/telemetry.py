"""Telemetry snapshot and decoded sample types."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, ClassVar

from pydantic import Field, field_validator

from pycarsoc._constants import DC_POWER_THRESHOLD_KW
from pycarsoc.ingestion.normalize import safe_float
from pycarsoc.models._base import CarSocBaseModel, Timestamp, is_unknown, to_epoch_ms

# Current/power magnitude (negative = into the battery) that signals charging.
_CHARGING_THRESHOLD = 0.5
# Speed under which the vehicle counts as stationary (km/h).
_STATIONARY_SPEED = 1.0
# Prefix for extension keys that would shadow a snapshot field on the wire.
EXTRA_KEY_PREFIX = "extra_"


@dataclass(frozen=True)
class DecodedSample:
    """One decoded PID value.  ``value`` is NaN when decoding failed."""

    name: str
    value: float
    values: tuple[float, ...] = ()

    @property
    def ok(self) -> bool:
        return not math.isnan(self.value)

    @classmethod
    def failed(cls, name: str) -> DecodedSample:
        return cls(name=name, value=math.nan)


class TelemetrySnapshot(CarSocBaseModel):
    """Normalized vehicle telemetry at one instant.

    Every physical field is optional: ``None`` means "unknown".
    Source-specific values live in ``extra`` and are flattened into the
    wire form.
    """

    # Keys emitted on the wire but derived from the stored fields.
    _DERIVED_KEYS: ClassVar[frozenset[str]] = frozenset(
        {"isCharging", "chargingStatus", "chargingStatusDescription", "localTime"}
    )

    timestamp: Timestamp = Field(default_factory=lambda: datetime.now(UTC))
    state_of_charge: float | None = None
    state_of_health: float | None = None
    battery_capacity: float | None = None
    battery_voltage: float | None = None
    battery_current: float | None = None
    battery_temperature: float | None = None
    range: float | None = None
    speed: float | None = None
    odometer: float | None = None
    power: float | None = None
    cumulative_charge: float | None = None
    cumulative_discharge: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    altitude: float | None = None
    gps_speed: float | None = None
    heading: float | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "state_of_charge",
        "state_of_health",
        "battery_capacity",
        "battery_voltage",
        "battery_current",
        "battery_temperature",
        "range",
        "speed",
        "odometer",
        "power",
        "cumulative_charge",
        "cumulative_discharge",
        "latitude",
        "longitude",
        "altitude",
        "gps_speed",
        "heading",
        mode="before",
    )
    @classmethod
    def _coerce_float(cls, value: Any) -> float | None:
        return safe_float(value)

    @classmethod
    def reserved_keys(cls) -> frozenset[str]:
        """Field names, their wire aliases and the derived wire keys."""
        names = set(cls.model_fields)
        names.update(field.alias for field in cls.model_fields.values() if field.alias)
        return frozenset(names) | cls._DERIVED_KEYS

    @field_validator("extra", mode="before")
    @classmethod
    def _clean_extra(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        reserved = cls.reserved_keys()
        cleaned: dict[str, Any] = {}
        for key, item in value.items():
            if is_unknown(item):
                continue
            cleaned[f"{EXTRA_KEY_PREFIX}{key}" if key in reserved else key] = item
        return cleaned

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def is_charging(self) -> bool:
        """Stationary and current or power flowing into the battery."""
        stationary = self.speed is None or self.speed < _STATIONARY_SPEED
        current_charging = self.battery_current is not None and self.battery_current < -_CHARGING_THRESHOLD
        power_charging = self.power is not None and self.power < -_CHARGING_THRESHOLD
        return stationary and (current_charging or power_charging)

    @property
    def charging_status(self) -> str:
        """IEC 61851 status letter: ``C`` while charging, else ``A``."""
        return "C" if self.is_charging else "A"

    @property
    def charging_status_description(self) -> str:
        if not self.is_charging:
            return "Not Charging"
        return "DC Charging" if abs(self.power or 0.0) > DC_POWER_THRESHOLD_KW else "AC Charging"

    def get_extra_float(self, key: str) -> float | None:
        return safe_float(self.extra.get(key))

    def with_updates(self, **changes: Any) -> TelemetrySnapshot:
        """Return a validated copy with *changes* applied."""
        data = self.model_dump()
        data.update(changes)
        return TelemetrySnapshot.model_validate(data)

    # ------------------------------------------------------------------
    # Wire / storage forms
    # ------------------------------------------------------------------

    def _fields_by_alias(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"timestamp", "extra"})

    def to_wire(self) -> dict[str, Any]:
        """Transmission form: ISO timestamp, fields and extensions flattened."""
        payload: dict[str, Any] = {"timestamp": self.timestamp.isoformat()}
        payload.update(self._fields_by_alias())
        payload["chargingStatus"] = self.charging_status
        payload["chargingStatusDescription"] = self.charging_status_description
        payload["isCharging"] = self.is_charging
        for key, value in self.extra.items():
            payload.setdefault(key, value)
        return payload

    def to_record(self) -> dict[str, Any]:
        """Storage form: epoch-ms timestamp, extensions spread as individual keys."""
        record: dict[str, Any] = {"timestamp": to_epoch_ms(self.timestamp)}
        record.update(self._fields_by_alias())
        for key, value in self.extra.items():
            record.setdefault(key, value)
        return record

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> TelemetrySnapshot:
        """Inverse of :meth:`to_wire` and :meth:`to_record`."""
        known = {field.alias or name for name, field in cls.model_fields.items()} | set(cls.model_fields)
        data: dict[str, Any] = {}
        extra: dict[str, Any] = dict(payload.get("extra") or {})
        for key, value in payload.items():
            if key in cls._DERIVED_KEYS or key == "extra":
                continue
            if key in known:
                data[key] = value
            else:
                extra[key] = value
        data["extra"] = extra
        return cls.model_validate(data)

    from_record = from_wire
