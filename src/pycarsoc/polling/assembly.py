"""Assemble decoded PID samples into one :class:`TelemetrySnapshot`."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pycarsoc.models.pid import PidDescriptor, PidType
from pycarsoc.models.telemetry import DecodedSample, TelemetrySnapshot

_logger = logging.getLogger(__name__)

_TYPE_FIELDS: dict[PidType, str] = {
    PidType.SPEED: "speed",
    PidType.STATE_OF_CHARGE: "state_of_charge",
    PidType.BATTERY_VOLTAGE: "battery_voltage",
    PidType.ODOMETER: "odometer",
    PidType.CUMULATIVE_CHARGE: "cumulative_charge",
    PidType.CUMULATIVE_DISCHARGE: "cumulative_discharge",
}


def custom_field_for(name: str) -> str | None:
    """Snapshot field a custom PID maps to by name, or ``None`` for ``extra``."""
    lower = name.lower()
    if "soh" in lower or "health" in lower:
        return "state_of_health"
    if "current" in lower or lower == "hv_a":
        return "battery_current"
    if lower == "hv_t_max" or ("temp" in lower and ("batt" in lower or "max" in lower)):
        return "battery_temperature"
    if "range" in lower:
        return "range"
    return None


def assemble_snapshot(
    samples: Iterable[DecodedSample],
    pids: Mapping[str, PidDescriptor],
    *,
    timestamp: datetime | None = None,
    extra: Mapping[str, Any] | None = None,
) -> TelemetrySnapshot:
    """Build a snapshot from *samples* (looked up in *pids* by name).

    Failed (NaN) samples are skipped, never written as ``0``.  For typed
    fields the first known sample in table order wins; ``range`` takes
    the last.  State of charge above 100 % is discarded.  Power is
    derived as ``V * I / 1000`` when both are known.
    """
    fields: dict[str, Any] = {}
    extensions: dict[str, Any] = dict(extra or {})

    for sample in samples:
        pid = pids.get(sample.name)
        if pid is None or not sample.ok:
            continue
        value = sample.value

        if pid.type is PidType.CELL_VOLTAGES:
            extensions["cellVoltageAvg"] = value
            if sample.values:
                extensions["cellVoltages"] = list(sample.values)
            continue
        if pid.type is PidType.CELL_TEMPERATURES:
            extensions["cellTempAvg"] = value
            if sample.values:
                extensions["cellTemperatures"] = list(sample.values)
            continue

        if pid.type is PidType.CUSTOM:
            target = custom_field_for(pid.name)
            if target is None:
                extensions[pid.name] = value
            elif target == "range" or target not in fields:
                fields[target] = value
            continue

        if pid.type is PidType.STATE_OF_CHARGE and value > 100.0:
            _logger.debug("Discarding state of charge %.1f%% from %s", value, pid.name)
            continue
        target = _TYPE_FIELDS[pid.type]
        fields.setdefault(target, value)

    voltage = fields.get("battery_voltage")
    current = fields.get("battery_current")
    if voltage is not None and current is not None:
        fields["power"] = voltage * current / 1000

    return TelemetrySnapshot(
        timestamp=timestamp or datetime.now(UTC),
        extra=extensions,
        **fields,
    )
