"""Common provider contract: connectivity flag plus a snapshot push-stream."""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import ClassVar

from pycarsoc.models.telemetry import TelemetrySnapshot


class DataSource(StrEnum):
    OBD = "obd"
    CLOUD = "cloud"
    MOCK = "mock"


SnapshotCallback = Callable[[TelemetrySnapshot], None]
ConnectivityCallback = Callable[["DataSourceProvider", bool], None]


class Subscription:
    """Handle returned by ``subscribe``; ``cancel()`` is idempotent."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel: Callable[[], None] | None = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def cancel(self) -> None:
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel()


class DataSourceProvider(abc.ABC):
    """A live telemetry source.

    Subclasses implement :meth:`connect` / :meth:`disconnect` and call
    :meth:`_publish` for every snapshot and :meth:`_set_connected` on
    link changes.  Callbacks run synchronously on the event loop in
    arrival order.
    """

    source: ClassVar[DataSource]

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(type(self).__module__)
        self._connected = False
        self._subscribers: list[SnapshotCallback] = []
        self._connectivity_listeners: list[ConnectivityCallback] = []
        self._last_snapshot: TelemetrySnapshot | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def last_snapshot(self) -> TelemetrySnapshot | None:
        return self._last_snapshot

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @abc.abstractmethod
    async def connect(self) -> bool:
        """Start the source; return whether it is connected afterwards."""

    @abc.abstractmethod
    async def disconnect(self) -> None:
        """Stop the source and cancel every task it owns."""

    def subscribe(self, callback: SnapshotCallback) -> Subscription:
        self._subscribers.append(callback)

        def _cancel() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return Subscription(_cancel)

    def add_connectivity_listener(self, callback: ConnectivityCallback) -> Subscription:
        self._connectivity_listeners.append(callback)

        def _cancel() -> None:
            if callback in self._connectivity_listeners:
                self._connectivity_listeners.remove(callback)

        return Subscription(_cancel)

    def _publish(self, snapshot: TelemetrySnapshot) -> None:
        self._last_snapshot = snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                self._logger.exception("%s snapshot subscriber failed", self.source.value)

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        self._logger.info("%s provider %s", self.source.value, "connected" if connected else "disconnected")
        for callback in list(self._connectivity_listeners):
            try:
                callback(self, connected)
            except Exception:
                self._logger.exception("%s connectivity listener failed", self.source.value)
