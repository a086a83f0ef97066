"""Engine configuration and settings providers for pycarsoc."""

from __future__ import annotations

import abc
import dataclasses
import os
from collections.abc import Mapping
from typing import Any, Protocol, TypeVar

from pycarsoc.exceptions import CarSocConfigError

_T = TypeVar("_T")

_MISSING: Any = object()


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


class SettingsProvider(Protocol):
    """Typed key/value lookup consumed by :meth:`TelemetryConfig.from_settings`.

    Implementations return *default* when they have no value for *key*.
    """

    def get_bool(self, key: str, default: _T) -> bool | _T: ...

    def get_int(self, key: str, default: _T) -> int | _T: ...

    def get_float(self, key: str, default: _T) -> float | _T: ...

    def get_str(self, key: str, default: _T) -> str | _T: ...


class _LookupSettings(abc.ABC):
    """Typed getters on top of a raw ``_lookup``."""

    @abc.abstractmethod
    def _lookup(self, key: str) -> Any:
        """Raw value for *key*, or ``_MISSING`` when absent."""

    def get_bool(self, key: str, default: _T) -> bool | _T:
        raw = self._lookup(key)
        if raw is _MISSING:
            return default
        if isinstance(raw, bool):
            return raw
        parsed = _env_bool(str(raw), default=None)  # type: ignore[arg-type]
        return default if parsed is None else parsed

    def get_int(self, key: str, default: _T) -> int | _T:
        raw = self._lookup(key)
        if raw is _MISSING:
            return default
        try:
            return int(float(raw))
        except (TypeError, ValueError) as exc:
            raise CarSocConfigError(f"Setting {key!r} is not an integer: {raw!r}") from exc

    def get_float(self, key: str, default: _T) -> float | _T:
        raw = self._lookup(key)
        if raw is _MISSING:
            return default
        try:
            return float(raw)
        except (TypeError, ValueError) as exc:
            raise CarSocConfigError(f"Setting {key!r} is not a number: {raw!r}") from exc

    def get_str(self, key: str, default: _T) -> str | _T:
        raw = self._lookup(key)
        if raw is _MISSING:
            return default
        return str(raw)


class MappingSettings(_LookupSettings):
    """Settings backed by an in-memory mapping (``None`` counts as absent)."""

    def __init__(self, values: Mapping[str, Any]) -> None:
        self._values = dict(values)

    def _lookup(self, key: str) -> Any:
        value = self._values.get(key)
        return _MISSING if value is None else value


class EnvSettings(_LookupSettings):
    """Settings read from environment variables named ``<prefix><KEY>``."""

    def __init__(self, prefix: str = "CARSOC_", environ: Mapping[str, str] | None = None) -> None:
        self._prefix = prefix
        self._environ = os.environ if environ is None else environ

    def _lookup(self, key: str) -> Any:
        value = self._environ.get(f"{self._prefix}{key.upper()}")
        return _MISSING if value is None or value == "" else value


class LayeredSettings:
    """Ordered fallback across providers; the first provider with a value wins."""

    def __init__(self, *providers: SettingsProvider) -> None:
        self._providers = providers

    def _first(self, getter: str, key: str, default: Any) -> Any:
        for provider in self._providers:
            value = getattr(provider, getter)(key, _MISSING)
            if value is not _MISSING:
                return value
        return default

    def get_bool(self, key: str, default: _T) -> bool | _T:
        return self._first("get_bool", key, default)

    def get_int(self, key: str, default: _T) -> int | _T:
        return self._first("get_int", key, default)

    def get_float(self, key: str, default: _T) -> float | _T:
        return self._first("get_float", key, default)

    def get_str(self, key: str, default: _T) -> str | _T:
        return self._first("get_str", key, default)


@dataclasses.dataclass(frozen=True)
class TelemetryConfig:
    """Engine configuration.

    Parameters
    ----------
    poll_interval : float
        Base poll cycle period in seconds.
    low_priority_period : int
        Low-priority PIDs are polled when ``cycle % low_priority_period == 0``.
    low_priority_periods : dict
        Per-PID-name overrides of ``low_priority_period``.
    pid_timeout : float
        Seconds to wait for one adapter response before recording NaN.
    inter_command_delay : float
        Pause between sequential adapter commands.
    header_switch_delay : float
        Pause after each ``ATSH``/``ATCRA``/``ATFCSH`` command.
    adapter_reset_delay : float
        Pause after ``ATZ`` while the adapter reboots.
    auto_reconnect : bool
        Reconnect the adapter with exponential backoff after a link loss.
    reconnect_max_attempts : int
        Give up after this many reconnect attempts.
    reconnect_base_delay : float
        First reconnect delay; doubles per attempt.
    ecu_wakeup_error_threshold : int
        NaN samples in the first cycles that trigger an ECU wake-up.
    ecu_wakeup_cycles : int
        Number of initial cycles in which a wake-up may be triggered.
    cloud_poll_interval : float
        Seconds between cloud vehicle-info fetches.
    mock_interval : float
        Seconds between synthetic snapshots.
    source_ranking : tuple of str
        Provider ranking, best first.
    charging_current_threshold : float
        Absolute battery current (A) that counts as charging.
    charging_current_negative : bool
        ``True`` when the vehicle reports charging current as negative.
    min_charge_change_ah : float
        Cumulative-charge rise between samples that counts as charging.
    idle_samples_to_end : int
        Consecutive non-charging samples that end a session.
    completion_soc : float
        State of charge at which a session is considered complete.
    min_session_energy_ah : float
        Sessions adding less energy are discarded instead of archived.
    aux_protection_enabled : bool
        Pause adapter polling while the 12 V battery is low.
    aux_voltage_threshold : float
        12 V battery voltage under which polling pauses.
    aux_voltage_hysteresis : float
        Polling resumes above ``aux_voltage_threshold + aux_voltage_hysteresis``.
    mqtt_topic_prefix : str
        Topic prefix used by :class:`pycarsoc.sinks.MqttSink`.
    """

    poll_interval: float = 5.0
    low_priority_period: int = 60
    low_priority_periods: dict[str, int] = dataclasses.field(default_factory=dict)
    pid_timeout: float = 4.0
    inter_command_delay: float = 0.2
    header_switch_delay: float = 0.05
    adapter_reset_delay: float = 2.0
    auto_reconnect: bool = True
    reconnect_max_attempts: int = 5
    reconnect_base_delay: float = 2.0
    ecu_wakeup_error_threshold: int = 5
    ecu_wakeup_cycles: int = 3
    cloud_poll_interval: float = 60.0
    mock_interval: float = 3.0
    source_ranking: tuple[str, ...] = ("obd", "cloud", "mock")
    charging_current_threshold: float = 0.5
    charging_current_negative: bool = True
    min_charge_change_ah: float = 0.1
    idle_samples_to_end: int = 3
    completion_soc: float = 100.0
    min_session_energy_ah: float = 0.1
    aux_protection_enabled: bool = False
    aux_voltage_threshold: float = 12.8
    aux_voltage_hysteresis: float = 0.3
    mqtt_topic_prefix: str = "carsoc"

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise CarSocConfigError("poll_interval must be positive")
        if self.low_priority_period < 1:
            raise CarSocConfigError("low_priority_period must be >= 1")
        if any(period < 1 for period in self.low_priority_periods.values()):
            raise CarSocConfigError("low_priority_periods values must be >= 1")
        if self.pid_timeout <= 0:
            raise CarSocConfigError("pid_timeout must be positive")
        if self.idle_samples_to_end < 1:
            raise CarSocConfigError("idle_samples_to_end must be >= 1")
        if not self.source_ranking:
            raise CarSocConfigError("source_ranking must name at least one source")

    @classmethod
    def from_settings(cls, settings: SettingsProvider, **overrides: Any) -> TelemetryConfig:
        """Build a configuration from any :class:`SettingsProvider`.

        Keys are the field names.  ``source_ranking`` is read as a
        comma-separated string.  Explicit keyword arguments win.
        """
        kwargs: dict[str, Any] = {}
        for field in dataclasses.fields(cls):
            name = field.name
            if name in overrides or name == "low_priority_periods":
                continue
            default = (
                field.default if field.default is not dataclasses.MISSING else field.default_factory()  # type: ignore[misc]
            )
            if isinstance(default, bool):
                value = settings.get_bool(name, _MISSING)
            elif isinstance(default, int):
                value = settings.get_int(name, _MISSING)
            elif isinstance(default, float):
                value = settings.get_float(name, _MISSING)
            elif isinstance(default, tuple):
                text = settings.get_str(name, _MISSING)
                value = (
                    text
                    if text is _MISSING
                    else tuple(part.strip().lower() for part in text.split(",") if part.strip())
                )
            else:
                value = settings.get_str(name, _MISSING)
            if value is not _MISSING:
                kwargs[name] = value
        kwargs.update(overrides)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, **overrides: Any) -> TelemetryConfig:
        """Create configuration from ``CARSOC_*`` environment variables.

        ``CARSOC_POLL_INTERVAL=2`` sets ``poll_interval`` and so on.
        Explicit keyword arguments override environment values.
        """
        return cls.from_settings(EnvSettings(), **overrides)

    def period_for(self, pid_name: str) -> int:
        """Low-priority period (in cycles) for a PID."""
        return self.low_priority_periods.get(pid_name, self.low_priority_period)
