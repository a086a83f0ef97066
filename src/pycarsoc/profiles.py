"""Built-in vehicle profiles: verified PID tables plus adapter init strings."""

from __future__ import annotations

from typing import Any

from pydantic import field_validator

from pycarsoc.models._base import CarSocBaseModel
from pycarsoc.models.pid import PidDescriptor, PidPriority, PidType


class VehicleProfile(CarSocBaseModel):
    """A named PID table with the adapter init it was verified with."""

    name: str
    manufacturer: str = ""
    model: str = ""
    year: str = ""
    init: str | None = None
    pids: tuple[PidDescriptor, ...] = ()

    @field_validator("pids", mode="before")
    @classmethod
    def _coerce_pids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return tuple(value)
        return value

    @property
    def init_commands(self) -> list[str]:
        """``init`` split on ``;``; empty when the adapter should auto-detect."""
        if not self.init:
            return []
        return [command.strip() for command in self.init.split(";") if command.strip()]

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "year": self.year,
            "init": self.init,
            "pids": [pid.to_json_dict() for pid in self.pids],
        }


def _pid(
    name: str,
    pid: str,
    description: str,
    formula: str,
    *,
    header: str,
    type: PidType = PidType.CUSTOM,
    priority: PidPriority = PidPriority.LOW,
) -> PidDescriptor:
    return PidDescriptor(
        name=name,
        pid=pid,
        description=description,
        type=type,
        formula=formula,
        header=header,
        priority=priority,
    )


_HIGH = PidPriority.HIGH

# BMS (704 -> 784) first, then VCU (7E0 -> 7E8), to keep header switches to two per cycle.
XPENG_G6 = VehicleProfile(
    name="XPENG G6",
    manufacturer="XPENG",
    model="G6",
    year="2023+",
    init="ATH1;ATSP6;ATS0;ATM0;ATAT1;ATFCSM1;ATSH704;ATCRA784;ATFCSH704",
    pids=(
        _pid("SOC", "221109", "State of Charge (%)", "[B4:B5]/10", header="704", type=PidType.STATE_OF_CHARGE, priority=_HIGH),
        _pid("SOH", "22110A", "State of Health (%)", "[B4:B5]/10", header="704"),
        _pid("HV_V", "221101", "HV Battery Voltage (V)", "[B4:B5]/10", header="704", type=PidType.BATTERY_VOLTAGE, priority=_HIGH),
        _pid("HV_A", "221103", "HV Battery Current (A)", "(B4*256+B5)*0.5-1600", header="704", priority=_HIGH),
        _pid("HV_C_V_MAX", "221105", "Max Cell Voltage (V)", "[B4:B5]/1000", header="704"),
        _pid("HV_C_V_MIN", "221106", "Min Cell Voltage (V)", "[B4:B5]/1000", header="704"),
        _pid("HV_T_MAX", "221107", "Max Battery Temp (C)", "B4-40", header="704", priority=_HIGH),
        _pid("HV_T_MIN", "221108", "Min Battery Temp (C)", "B4-40", header="704"),
        _pid(
            "Cumulative Charge",
            "221120",
            "Battery Pack Cumulative Charging (Ah)",
            "A<<24+B<<16+C<<8+D",
            header="704",
            type=PidType.CUMULATIVE_CHARGE,
        ),
        _pid(
            "Cumulative Discharge",
            "221121",
            "Battery Pack Cumulative Discharging (Ah)",
            "A<<24+B<<16+C<<8+D",
            header="704",
            type=PidType.CUMULATIVE_DISCHARGE,
        ),
        _pid("CELL_V_AVG", "221122", "Average Cell Voltage (V)", "multi-frame", header="704", type=PidType.CELL_VOLTAGES),
        _pid(
            "CELL_T_AVG", "221123", "Average Cell Temperature (C)", "multi-frame", header="704", type=PidType.CELL_TEMPERATURES
        ),
        _pid("CLTC_RANGE", "221118", "CLTC Range (km)", "[B4:B5]", header="704"),
        _pid("BMS_CHG_STATUS", "22112D", "BMS Charge Status (0=Not charging, 2=Charging)", "B4", header="704", priority=_HIGH),
        _pid("CHG_LIMIT", "221130", "Charge Limit Setting (%)", "[B4:B5]", header="704"),
        _pid("Speed", "220104", "Vehicle Speed (km/h)", "[B4:B5]/100", header="7E0", type=PidType.SPEED, priority=_HIGH),
        _pid("ODOMETER", "220101", "Odometer (km)", "[B5:B6]", header="7E0", type=PidType.ODOMETER),
        _pid("AUX_V", "220102", "12V Auxiliary Battery Voltage (V)", "B4/10", header="7E0", priority=_HIGH),
        _pid("RANGE_EST", "220313", "Estimated Range (km)", "B4", header="7E0"),
        _pid("HV_PWR", "22031A", "HV Battery Power (kW)", "([B4:B5]-20000)/10", header="7E0", priority=_HIGH),
        _pid("CHARGING", "22031D", "Charging Status (0=No, 1=Yes)", "B4", header="7E0", priority=_HIGH),
        _pid(
            "DC_CHG_STATUS",
            "22031E",
            "DC Charge Status (0=Unplugged, 1=Initializing, 2=Charging, 3=Complete, 4=Stopped)",
            "B4",
            header="7E0",
            priority=_HIGH,
        ),
        _pid("DC_CHG_A", "22031F", "DC Fast Charge Current (A)", "[B4:B5]/10-1200", header="7E0", priority=_HIGH),
        _pid("DC_CHG_V", "220320", "DC Fast Charge Voltage (V)", "[B4:B5]", header="7E0", priority=_HIGH),
        _pid("AC_CHG_A", "220321", "AC Charge Current (A)", "[B4:B5]*2", header="7E0", priority=_HIGH),
        _pid("AC_CHG_V", "220322", "AC Charge Voltage (V)", "B4*3", header="7E0", priority=_HIGH),
        _pid("INV_T", "220325", "Inverter Temperature (C)", "B4/2-40", header="7E0"),
        _pid("MOTOR_T", "220327", "Motor Coolant Temp (C)", "B4/2-40", header="7E0"),
        _pid("COOLANT_T", "220328", "Battery Coolant Temp (C)", "B4/2-40", header="7E0"),
    ),
)

# Generic mode-01 PIDs decoded by the built-in rules.
STANDARD_PIDS: tuple[PidDescriptor, ...] = (
    PidDescriptor(name="Vehicle Speed", pid="010D", description="Speed in km/h", type=PidType.SPEED),
    PidDescriptor(name="State of Charge", pid="015B", description="Battery SOC (%)", type=PidType.STATE_OF_CHARGE),
    PidDescriptor(name="Battery Voltage", pid="0142", description="Battery voltage (V)", type=PidType.BATTERY_VOLTAGE),
    PidDescriptor(name="Odometer", pid="01A6", description="Total distance (km)", type=PidType.ODOMETER),
)

_PROFILES: tuple[VehicleProfile, ...] = (XPENG_G6,)


def get_profiles() -> list[VehicleProfile]:
    return list(_PROFILES)


def find_profile(name: str) -> VehicleProfile | None:
    """Case-insensitive lookup by profile name."""
    wanted = name.strip().lower()
    for profile in _PROFILES:
        if profile.name.lower() == wanted:
            return profile
    return None
