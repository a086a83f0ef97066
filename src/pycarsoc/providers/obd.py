"""ELM327 adapter provider.

Owns the adapter session: initialisation, per-PID ECU header switching,
the poll loop driven by :class:`~pycarsoc.polling.PollScheduler`, the
low-priority value cache, ECU wake-up and reconnect with exponential
backoff.  Every background task is cancelled by :meth:`ObdProvider.disconnect`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from pycarsoc._constants import (
    ECU_WAKEUP_REQUESTS,
    ELM_AUTO_PROTOCOL,
    ELM_BASE_INIT,
    ELM_POST_INIT,
    ELM_RESET_COMMAND,
    EXTENDED_PID_INIT,
    VEHICLE_INIT_SIGNATURES,
)
from pycarsoc._transport import AdapterTransport
from pycarsoc.config import TelemetryConfig
from pycarsoc.decoding.decoder import response_address
from pycarsoc.exceptions import AdapterDisconnectedError, CarSocTransportError
from pycarsoc.models.pid import PidDescriptor, PidPriority
from pycarsoc.models.telemetry import DecodedSample, TelemetrySnapshot
from pycarsoc.polling.assembly import assemble_snapshot
from pycarsoc.polling.scheduler import PollScheduler
from pycarsoc.profiles import VehicleProfile
from pycarsoc.providers.base import DataSource, DataSourceProvider

_WAKEUP_SETTLE_DELAY = 0.5


def detect_vehicle_init(pids: Iterable[PidDescriptor]) -> tuple[str | None, list[str]]:
    """Pick a vehicle-specific init sequence from the PIDs in the table.

    Returns ``(vehicle_name, commands)``; ``commands`` is empty when the
    adapter should auto-detect the protocol.
    """
    wire_ids = {pid.pid for pid in pids}
    if not wire_ids:
        return None, []
    for vehicle, signature, init in VEHICLE_INIT_SIGNATURES:
        if wire_ids & signature:
            return vehicle, [cmd.strip() for cmd in init.split(";") if cmd.strip()]
    if all(len(wire_id) >= 6 for wire_id in wire_ids):
        return "extended PIDs", EXTENDED_PID_INIT.split(";")
    return None, []


class ObdProvider(DataSourceProvider):
    """Polls an ELM327 adapter and publishes one snapshot per cycle."""

    source = DataSource.OBD

    def __init__(
        self,
        transport: AdapterTransport,
        pids: Sequence[PidDescriptor],
        *,
        init: Sequence[str] | None = None,
        vehicle: str | None = None,
        config: TelemetryConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        self._transport = transport
        self._pids: tuple[PidDescriptor, ...] = tuple(pids)
        if init is None:
            vehicle, detected = detect_vehicle_init(self._pids)
            init = detected
        self._vehicle = vehicle
        self._init: tuple[str, ...] = tuple(init)
        self._pid_map = {pid.name: pid for pid in self._pids}
        self._config = config or TelemetryConfig()
        self._scheduler = self._new_scheduler()
        self._current_header: str | None = None
        self._low_priority_cache: dict[str, DecodedSample] = {}
        self._low_priority_updated: datetime | None = None
        self._wakeup_attempted = False
        self._paused = False
        self._poll_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_attempts = 0

    @classmethod
    def from_profile(
        cls,
        transport: AdapterTransport,
        profile: VehicleProfile,
        *,
        config: TelemetryConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> ObdProvider:
        """Provider polling *profile*'s PID table with its verified init string."""
        return cls(
            transport,
            profile.pids,
            init=profile.init_commands,
            vehicle=profile.name,
            config=config,
            logger=logger,
        )

    def _new_scheduler(self) -> PollScheduler:
        return PollScheduler(
            self._pids,
            low_priority_period=self._config.low_priority_period,
            periods=self._config.low_priority_periods,
            timeout=self._config.pid_timeout,
            inter_command_delay=self._config.inter_command_delay,
        )

    @property
    def pids(self) -> tuple[PidDescriptor, ...]:
        return self._pids

    @property
    def init_commands(self) -> tuple[str, ...]:
        return self._init

    @property
    def current_header(self) -> str | None:
        return self._current_header

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ------------------------------------------------------------------
    # Adapter I/O
    # ------------------------------------------------------------------

    async def _send(self, command: str) -> str:
        self._logger.debug("TX %s", command)
        response = await self._transport.send(command)
        self._logger.debug("RX %r", response)
        return response

    async def _initialize_adapter(self) -> None:
        cfg = self._config
        await self._send(ELM_RESET_COMMAND)
        await asyncio.sleep(cfg.adapter_reset_delay)
        for command in ELM_BASE_INIT:
            await self._send(command)
            await asyncio.sleep(cfg.inter_command_delay)

        self._current_header = None
        if self._init:
            self._logger.info("Using %s init: %s", self._vehicle or "custom", ";".join(self._init))
            for command in self._init:
                await self._send(command)
                await asyncio.sleep(cfg.inter_command_delay)
                if command.startswith("ATSH"):
                    self._current_header = command[4:]
        else:
            self._logger.info("Using standard init (auto protocol)")
            await self._send(ELM_AUTO_PROTOCOL)
            await asyncio.sleep(cfg.inter_command_delay)

        for command in ELM_POST_INIT:
            await self._send(command)
            await asyncio.sleep(cfg.inter_command_delay)

        protocol = await self._send("ATDPN")
        self._logger.info("ELM327 initialized (protocol %s)", protocol.strip())
        self._wakeup_attempted = False

    async def switch_header(self, header: str) -> None:
        """Point requests at *header* and replies/flow control at its ECU."""
        delay = self._config.header_switch_delay
        self._logger.debug("Switching ECU header %s -> %s", self._current_header, header)
        await self._send(f"ATSH{header}")
        await asyncio.sleep(delay)
        await self._send(f"ATCRA{response_address(header)}")
        await asyncio.sleep(delay)
        await self._send(f"ATFCSH{header}")
        await asyncio.sleep(delay)
        self._current_header = header

    async def _query(self, pid: PidDescriptor) -> str:
        if pid.header and pid.header != self._current_header:
            await self.switch_header(pid.header)
        return await self._send(pid.pid)

    async def _wake_up_ecus(self) -> None:
        self._logger.info("Sending ECU wake-up requests")
        try:
            for header, request in ECU_WAKEUP_REQUESTS:
                await self._send(f"ATSH{header}")
                await asyncio.sleep(self._config.header_switch_delay)
                await self._send(request)
                await asyncio.sleep(_WAKEUP_SETTLE_DELAY)
        except CarSocTransportError as exc:
            self._logger.warning("ECU wake-up failed: %s", exc)
        finally:
            self._wakeup_attempted = True
            # Force a full header switch on the next PID.
            self._current_header = None

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _merge_with_cache(self, samples: list[DecodedSample]) -> list[DecodedSample]:
        polled = {sample.name: sample for sample in samples}
        for sample in samples:
            pid = self._pid_map.get(sample.name)
            if pid is not None and pid.priority is PidPriority.LOW and sample.ok:
                self._low_priority_cache[sample.name] = sample

        merged: list[DecodedSample] = []
        for pid in self._pids:
            sample = polled.get(pid.name)
            if sample is None and pid.priority is PidPriority.LOW:
                sample = self._low_priority_cache.get(pid.name)
            if sample is not None:
                merged.append(sample)
        return merged

    async def poll_once(self) -> TelemetrySnapshot:
        """Run one scheduler cycle and publish the assembled snapshot.

        Raises :class:`AdapterDisconnectedError` when the adapter link
        dropped during the cycle.
        """
        cycle = self._scheduler.cycle
        polls_low_priority = any(pid.priority is PidPriority.LOW for pid in self._scheduler.due(cycle))
        samples = await self._scheduler.run_cycle(self._query)
        if not self._transport.is_open:
            raise AdapterDisconnectedError("Adapter link lost during poll cycle")

        if polls_low_priority:
            self._low_priority_updated = datetime.now(UTC)
        failures = sum(1 for sample in samples if not sample.ok)

        extra: dict[str, str] = {}
        if self._low_priority_updated is not None:
            extra["lowPriorityLastUpdated"] = self._low_priority_updated.isoformat()
        snapshot = assemble_snapshot(self._merge_with_cache(samples), self._pid_map, extra=extra)

        cfg = self._config
        if (
            not self._wakeup_attempted
            and cycle < cfg.ecu_wakeup_cycles
            and failures >= cfg.ecu_wakeup_error_threshold
        ):
            self._logger.info("%d failed PIDs on cycle %d; ECUs may be asleep", failures, cycle)
            await self._wake_up_ecus()

        self._publish(snapshot)
        return snapshot

    async def _poll_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self._config.poll_interval
        while True:
            if self._paused:
                await asyncio.sleep(interval)
                continue
            started = loop.time()
            try:
                await self.poll_once()
            except AdapterDisconnectedError as exc:
                self._logger.warning("%s", exc)
                self._handle_link_lost()
                return
            await asyncio.sleep(max(0.0, interval - (loop.time() - started)))

    def _start_polling(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop(), name="pycarsoc-obd-poll")

    def pause(self) -> None:
        """Stop issuing adapter requests until :meth:`resume`."""
        if not self._paused:
            self._paused = True
            self._logger.info("OBD polling paused")

    def resume(self) -> None:
        if self._paused:
            self._paused = False
            self._logger.info("OBD polling resumed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _open_session(self) -> None:
        await self._transport.open()
        await self._initialize_adapter()
        self._scheduler = self._new_scheduler()
        self._reconnect_attempts = 0

    async def connect(self) -> bool:
        if self.is_connected:
            return True
        try:
            await self._open_session()
        except CarSocTransportError as exc:
            self._logger.warning("Adapter connect failed: %s", exc)
            with contextlib.suppress(CarSocTransportError):
                await self._transport.close()
            return False
        self._set_connected(True)
        self._start_polling()
        return True

    def _handle_link_lost(self) -> None:
        self._set_connected(False)
        if self._config.auto_reconnect and not self.is_reconnecting:
            self._reconnect_task = asyncio.create_task(self._reconnect_loop(), name="pycarsoc-obd-reconnect")

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff before reconnect *attempt* (1-based): 2 s, 4 s, 8 s, ..."""
        return self._config.reconnect_base_delay * (2 ** (attempt - 1))

    async def _reconnect_loop(self) -> None:
        cfg = self._config
        while self._reconnect_attempts < cfg.reconnect_max_attempts:
            self._reconnect_attempts += 1
            delay = self.reconnect_delay(self._reconnect_attempts)
            self._logger.info(
                "Reconnect attempt %d/%d in %.0fs",
                self._reconnect_attempts,
                cfg.reconnect_max_attempts,
                delay,
            )
            await asyncio.sleep(delay)
            with contextlib.suppress(CarSocTransportError):
                await self._transport.close()
            try:
                await self._open_session()
            except CarSocTransportError as exc:
                self._logger.info("Reconnect attempt failed: %s", exc)
                continue
            self._set_connected(True)
            self._start_polling()
            return
        self._logger.warning("Giving up on adapter after %d reconnect attempts", self._reconnect_attempts)
        self._reconnect_attempts = 0

    async def disconnect(self) -> None:
        current = asyncio.current_task()
        for attr in ("_reconnect_task", "_poll_task"):
            task = getattr(self, attr)
            setattr(self, attr, None)
            if task is None or task is current:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        with contextlib.suppress(CarSocTransportError):
            await self._transport.close()
        self._current_header = None
        self._set_connected(False)
