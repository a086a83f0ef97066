"""Charging session detection and finalisation.

:class:`ChargingSessionTracker` consumes the manager's snapshot stream and
runs a two-state machine (idle / charging).  A session starts when the
battery current, an explicit charging flag or a rising cumulative-charge
counter says charge is flowing, and ends after a run of idle samples or
when the battery reaches the completion SOC.  Finished sessions are handed
to the sink together with their sample curve; the tracker keeps nothing
but the active session and the previous session's end odometer.

Counter resets (a provider switch, an adapter replacing a cloud reading)
are treated as discontinuities: the session baseline is shifted so the
energy accumulated so far is preserved, and the session keeps running.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from pycarsoc._constants import DC_POWER_THRESHOLD_KW
from pycarsoc.config import TelemetryConfig
from pycarsoc.models._base import to_epoch_ms
from pycarsoc.models.charging import ChargingSample, ChargingSession
from pycarsoc.models.telemetry import TelemetrySnapshot
from pycarsoc.providers.base import DataSource, Subscription
from pycarsoc.sinks import TelemetrySink

_logger = logging.getLogger(__name__)

# Extension flags and the values that mean "charging" (DC status 3/4 are complete/stopped).
CHARGING_FLAG_VALUES: dict[str, frozenset[int]] = {
    "CHARGING": frozenset({1}),
    "BMS_CHG_STATUS": frozenset({2}),
    "DC_CHG_STATUS": frozenset({2}),
}


class TrackerState(StrEnum):
    IDLE = "idle"
    CHARGING = "charging"


class SessionEventType(StrEnum):
    STARTED = "started"
    UPDATED = "updated"
    COMPLETED = "completed"
    DISCARDED = "discarded"
    DISCONTINUITY = "discontinuity"


@dataclass(frozen=True)
class SessionEvent:
    type: SessionEventType
    session: ChargingSession
    message: str = ""


SessionListener = Callable[[SessionEvent], None]


class ChargingSessionTracker:
    """Turns a telemetry stream into archived :class:`ChargingSession` objects."""

    def __init__(
        self,
        *,
        config: TelemetryConfig | None = None,
        sink: TelemetrySink | None = None,
        previous_end_odometer: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config or TelemetryConfig()
        self._sink = sink
        self._logger = logger or _logger
        self._previous_end_odometer = previous_end_odometer
        self._listeners: list[SessionListener] = []

        self._session: ChargingSession | None = None
        self._samples: list[ChargingSample] = []
        self._last_cumulative: float | None = None
        self._last_soc: float | None = None
        self._idle_samples = 0
        self._peak_power_kw: float | None = None
        self._voltage_sum = 0.0
        self._voltage_count = 0
        self._rebaseline = False
        self._wait_for_idle = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> TrackerState:
        return TrackerState.CHARGING if self._session is not None else TrackerState.IDLE

    @property
    def active_session(self) -> ChargingSession | None:
        return self._session

    @property
    def samples(self) -> tuple[ChargingSample, ...]:
        return tuple(self._samples)

    @property
    def previous_end_odometer(self) -> float | None:
        return self._previous_end_odometer

    def add_listener(self, callback: SessionListener) -> Subscription:
        self._listeners.append(callback)

        def _cancel() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription(_cancel)

    def _emit(self, event_type: SessionEventType, session: ChargingSession, message: str = "") -> None:
        event = SessionEvent(event_type, session, message)
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                self._logger.exception("Charging session listener failed")

    # ------------------------------------------------------------------
    # Stream input
    # ------------------------------------------------------------------

    def on_source_changed(self, previous: DataSource | None, current: DataSource | None) -> None:
        """Mark the next sample as coming from a different counter baseline."""
        if previous is not None and current is not None and previous != current:
            self._logger.debug("Source switched %s -> %s; re-baselining counters", previous.value, current.value)
            self._rebaseline = True

    def process(self, snapshot: TelemetrySnapshot | None) -> TrackerState:
        """Feed one snapshot; returns the tracker state afterwards.

        ``None`` (no source connected) and snapshots without a cumulative
        charge counter are ignored.
        """
        if snapshot is None:
            return self.state
        cumulative = snapshot.cumulative_charge
        if cumulative is None:
            self._logger.debug("No cumulative charge in snapshot; skipping")
            return self.state
        if snapshot.state_of_charge is not None:
            self._last_soc = snapshot.state_of_charge

        if self._rebaseline or (self._last_cumulative is not None and cumulative < self._last_cumulative):
            reason = "source switch" if self._rebaseline else "counter decrease"
            self._handle_discontinuity(cumulative, reason)
            self._rebaseline = False
            # No rise can be measured across a reset.
            self._last_cumulative = cumulative

        reason = self._charging_reason(snapshot, cumulative)
        if self._session is None:
            if reason is None:
                self._wait_for_idle = False
            elif not self._wait_for_idle:
                self._start_session(snapshot, cumulative, reason)
        elif reason is not None:
            self._idle_samples = 0
            self._record(snapshot)
            self._emit(SessionEventType.UPDATED, self._session)
            soc = snapshot.state_of_charge
            if soc is not None and soc >= self._config.completion_soc:
                self._logger.info("Battery reached %.1f%%; completing session", soc)
                self._finalize(snapshot, cumulative)
                self._wait_for_idle = True
        else:
            self._idle_samples += 1
            if self._idle_samples >= self._config.idle_samples_to_end:
                self._finalize(snapshot, cumulative)

        self._last_cumulative = cumulative
        return self.state

    def end_current_session(self, last_snapshot: TelemetrySnapshot | None) -> ChargingSession | None:
        """Finish the active session at shutdown.

        Without a final snapshot carrying the counter the session is
        dropped unarchived, since the energy added cannot be known.
        """
        session = self._session
        if session is None:
            return None
        if last_snapshot is None or last_snapshot.cumulative_charge is None:
            self._logger.info("Closing session %s without end data; not archiving", session.id)
            closed = session.replace(is_active=False)
            self._reset_session()
            self._emit(SessionEventType.DISCARDED, closed, "no end data")
            return None
        return self._finalize(last_snapshot, last_snapshot.cumulative_charge)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _charging_reason(self, snapshot: TelemetrySnapshot, cumulative: float) -> str | None:
        cfg = self._config
        current = snapshot.battery_current
        if current is not None:
            inflow = -current if cfg.charging_current_negative else current
            if inflow > cfg.charging_current_threshold:
                return f"current {current:.2f}A"
        for key, charging_values in CHARGING_FLAG_VALUES.items():
            flag = snapshot.get_extra_float(key)
            if flag is not None and int(flag) in charging_values:
                return f"{key}={flag:g}"
        if self._last_cumulative is not None:
            rise = cumulative - self._last_cumulative
            if rise > cfg.min_charge_change_ah:
                return f"cumulative rise {rise:.3f}Ah"
        return None

    def _handle_discontinuity(self, cumulative: float, reason: str) -> None:
        session = self._session
        if session is None or self._last_cumulative is None:
            self._logger.debug("Counter discontinuity while idle (%s)", reason)
            return
        accumulated = self._last_cumulative - session.start_cumulative_charge
        self._session = session.replace(
            start_cumulative_charge=cumulative - accumulated,
            discontinuities=session.discontinuities + 1,
        )
        message = f"{reason}: {self._last_cumulative:.2f}Ah -> {cumulative:.2f}Ah"
        self._logger.warning("Charging session %s discontinuity (%s)", session.id, message)
        self._emit(SessionEventType.DISCONTINUITY, self._session, message)

    def _start_session(self, snapshot: TelemetrySnapshot, cumulative: float, reason: str) -> None:
        # The last pre-charge reading keeps energy added before detection.
        start = self._last_cumulative if self._last_cumulative is not None else cumulative
        self._session = ChargingSession(
            id=f"charge_{to_epoch_ms(datetime.now(UTC))}",
            start_time=snapshot.timestamp,
            start_cumulative_charge=start,
            start_soc=snapshot.state_of_charge,
            start_odometer=snapshot.odometer,
            previous_end_odometer=self._previous_end_odometer,
        )
        self._samples = []
        self._idle_samples = 0
        self._peak_power_kw = None
        self._voltage_sum = 0.0
        self._voltage_count = 0
        self._logger.info(
            "Charging started (%s): session %s, SOC %s%%, start counter %.2fAh",
            reason,
            self._session.id,
            snapshot.state_of_charge,
            start,
        )
        self._record(snapshot)
        self._emit(SessionEventType.STARTED, self._session)

    def _record(self, snapshot: TelemetrySnapshot) -> None:
        voltage = snapshot.battery_voltage
        current = snapshot.battery_current
        power = snapshot.power
        if power is None and voltage is not None and current is not None:
            power = voltage * current / 1000
        if voltage is not None:
            self._voltage_sum += voltage
            self._voltage_count += 1
        if power is not None:
            magnitude = abs(power)
            if self._peak_power_kw is None or magnitude > self._peak_power_kw:
                self._peak_power_kw = magnitude
        if snapshot.state_of_charge is None or power is None:
            return
        self._samples.append(
            ChargingSample(
                timestamp=snapshot.timestamp,
                soc=snapshot.state_of_charge,
                power_kw=abs(power),
                temperature=snapshot.battery_temperature,
                voltage=voltage,
                current=current,
            )
        )

    def _finalize(self, snapshot: TelemetrySnapshot, cumulative: float) -> ChargingSession | None:
        session = self._session
        if session is None:
            return None
        peak = self._peak_power_kw
        completed = session.replace(
            end_time=max(snapshot.timestamp, session.start_time),
            end_cumulative_charge=cumulative,
            end_soc=snapshot.state_of_charge if snapshot.state_of_charge is not None else self._last_soc,
            end_odometer=snapshot.odometer if snapshot.odometer is not None else session.start_odometer,
            is_active=False,
            charging_type=None if peak is None else ("dc" if peak > DC_POWER_THRESHOLD_KW else "ac"),
            peak_power_kw=peak,
            average_voltage=self._voltage_sum / self._voltage_count if self._voltage_count else None,
        )
        samples = list(self._samples)
        self._reset_session()

        energy = completed.energy_added_ah or 0.0
        if energy < self._config.min_session_energy_ah:
            self._logger.info("Session %s discarded: only %.2fAh added", completed.id, energy)
            self._emit(SessionEventType.DISCARDED, completed, f"{energy:.2f}Ah added")
            return None

        self._logger.info(
            "Charging session %s completed: %.2fAh, %s kWh, SOC %s%% -> %s%%, %d samples",
            completed.id,
            energy,
            f"{completed.energy_kwh:.2f}" if completed.energy_kwh is not None else "?",
            completed.start_soc,
            completed.end_soc,
            len(samples),
        )
        if completed.end_odometer is not None:
            self._previous_end_odometer = completed.end_odometer
        if self._sink is not None:
            try:
                self._sink.archive(completed, samples)
            except Exception:
                self._logger.exception("Archiving session %s failed", completed.id)
        self._emit(SessionEventType.COMPLETED, completed)
        return completed

    def _reset_session(self) -> None:
        self._session = None
        self._samples = []
        self._idle_samples = 0
        self._peak_power_kw = None
        self._voltage_sum = 0.0
        self._voltage_count = 0
