"""Charging session tracking."""

from pycarsoc.charging.tracker import (
    CHARGING_FLAG_VALUES,
    ChargingSessionTracker,
    SessionEvent,
    SessionEventType,
    SessionListener,
    TrackerState,
)

__all__ = [
    "CHARGING_FLAG_VALUES",
    "ChargingSessionTracker",
    "SessionEvent",
    "SessionEventType",
    "SessionListener",
    "TrackerState",
]
