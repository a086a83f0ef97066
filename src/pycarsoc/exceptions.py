"""Custom exception hierarchy for pycarsoc."""

from __future__ import annotations


class CarSocError(Exception):
    """Base exception for all pycarsoc errors."""


class CarSocConfigError(CarSocError):
    """Invalid or missing configuration."""


class PidTableError(CarSocError):
    """A persisted PID table could not be parsed."""


class CarSocTransportError(CarSocError):
    """Adapter or HTTP level failure (timeout, disconnect, bad payload)."""

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        endpoint: str = "",
        status_code: int | None = None,
    ) -> None:
        self.command = command
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class AdapterTimeoutError(CarSocTransportError):
    """The adapter did not answer a command in time."""


class AdapterDisconnectedError(CarSocTransportError):
    """The adapter link dropped or was never opened."""


class ProviderError(CarSocError):
    """A data-source provider could not be started or used."""
