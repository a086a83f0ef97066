"""Typed value models for pycarsoc."""

from pycarsoc.models.charging import ChargingSample, ChargingSession
from pycarsoc.models.pid import (
    PidDescriptor,
    PidPriority,
    PidType,
    dump_pid_table,
    load_pid_table,
)
from pycarsoc.models.telemetry import DecodedSample, TelemetrySnapshot

__all__ = [
    "ChargingSample",
    "ChargingSession",
    "DecodedSample",
    "PidDescriptor",
    "PidPriority",
    "PidType",
    "TelemetrySnapshot",
    "dump_pid_table",
    "load_pid_table",
]
