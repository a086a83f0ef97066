"""PID descriptor model and persisted PID tables."""

from __future__ import annotations

import json
from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from pydantic import ValidationError, field_validator

from pycarsoc._constants import MULTI_FRAME_FORMULA
from pycarsoc.exceptions import PidTableError
from pycarsoc.models._base import CarSocBaseModel


def _unqualify(value: object) -> object:
    # Accept qualified names such as "OBDPIDType.speed".
    if isinstance(value, str) and "." in value:
        return value.rsplit(".", 1)[1]
    return value


class PidType(StrEnum):
    """Decoding rule tag of a PID.

    Unknown tags resolve to ``SPEED``.
    """

    SPEED = "speed"
    STATE_OF_CHARGE = "stateOfCharge"
    BATTERY_VOLTAGE = "batteryVoltage"
    ODOMETER = "odometer"
    CUMULATIVE_CHARGE = "cumulativeCharge"
    CUMULATIVE_DISCHARGE = "cumulativeDischarge"
    CELL_VOLTAGES = "cellVoltages"
    CELL_TEMPERATURES = "cellTemperatures"
    CUSTOM = "custom"

    @classmethod
    def _missing_(cls, value: object) -> PidType:
        short = _unqualify(value)
        for member in cls:
            if member.value == short:
                return member
        return cls.SPEED


class PidPriority(StrEnum):
    """Polling tier.  Unknown tiers resolve to ``HIGH``."""

    HIGH = "high"
    LOW = "low"

    @classmethod
    def _missing_(cls, value: object) -> PidPriority:
        short = _unqualify(value)
        for member in cls:
            if member.value == short:
                return member
        return cls.HIGH


ARRAY_PID_TYPES = frozenset({PidType.CELL_VOLTAGES, PidType.CELL_TEMPERATURES})


class PidDescriptor(CarSocBaseModel):
    """One queryable quantity: wire id, optional ECU header, decoding rule."""

    name: str
    pid: str
    description: str = ""
    type: PidType = PidType.SPEED
    formula: str | None = None
    header: str | None = None
    priority: PidPriority = PidPriority.HIGH

    @field_validator("pid", "header", mode="before")
    @classmethod
    def _normalise_hex(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().replace(" ", "").upper() or None
        return value

    @field_validator("formula", mode="before")
    @classmethod
    def _normalise_formula(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> PidType:
        return PidType(value) if value is not None else PidType.SPEED

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> PidPriority:
        return PidPriority(value) if value is not None else PidPriority.HIGH

    @property
    def effective_formula(self) -> str | None:
        """Formula used for decoding; the multi-frame marker counts as none."""
        if self.formula is None or self.formula.lower() == MULTI_FRAME_FORMULA:
            return None
        return self.formula

    @property
    def is_array(self) -> bool:
        return self.type in ARRAY_PID_TYPES

    def to_json_dict(self) -> dict[str, Any]:
        """Persisted form ``{name, pid, description, type, formula?, header?, priority}``."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_json_dict(cls, data: dict[str, Any]) -> PidDescriptor:
        return cls.model_validate(data)


def load_pid_table(source: str | Iterable[dict[str, Any]]) -> list[PidDescriptor]:
    """Parse a persisted PID table (JSON text or already-decoded list)."""
    if isinstance(source, str):
        try:
            source = json.loads(source)
        except json.JSONDecodeError as exc:
            raise PidTableError(f"PID table is not valid JSON: {exc}") from exc
    if not isinstance(source, list):
        raise PidTableError("PID table must be a JSON array")
    pids: list[PidDescriptor] = []
    for index, item in enumerate(source):
        if not isinstance(item, dict):
            raise PidTableError(f"PID table entry {index} is not an object")
        try:
            pids.append(PidDescriptor.from_json_dict(item))
        except ValidationError as exc:
            raise PidTableError(f"PID table entry {index} is invalid: {exc}") from exc
    return pids


def dump_pid_table(pids: Iterable[PidDescriptor]) -> str:
    return json.dumps([pid.to_json_dict() for pid in pids])
