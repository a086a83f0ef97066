"""Priority-aware poll cycle scheduler.

High-priority PIDs are queried every cycle.  A low-priority PID is
queried only when ``cycle % period == 0`` for its configured period, so
cycle ``0`` polls the whole table.  Queries run sequentially, each under
its own timeout; a timeout or transport failure records a NaN sample
for that PID and the cycle moves on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping

from pycarsoc.decoding.decoder import decode_sample
from pycarsoc.exceptions import CarSocTransportError
from pycarsoc.models.pid import PidDescriptor, PidPriority
from pycarsoc.models.telemetry import DecodedSample

_logger = logging.getLogger(__name__)

QueryFn = Callable[[PidDescriptor], Awaitable[str]]
"""Sends one PID request and resolves to the raw adapter response."""


class PollScheduler:
    """Decides which PIDs each cycle queries and runs the cycle."""

    def __init__(
        self,
        pids: Iterable[PidDescriptor],
        *,
        low_priority_period: int = 60,
        periods: Mapping[str, int] | None = None,
        timeout: float = 4.0,
        inter_command_delay: float = 0.0,
    ) -> None:
        if low_priority_period < 1:
            raise ValueError("low_priority_period must be >= 1")
        self._pids: tuple[PidDescriptor, ...] = tuple(pids)
        self._default_period = low_priority_period
        self._periods = dict(periods or {})
        self._timeout = timeout
        self._inter_command_delay = inter_command_delay
        self._cycle = 0

    @property
    def pids(self) -> tuple[PidDescriptor, ...]:
        return self._pids

    @property
    def cycle(self) -> int:
        """Index of the next cycle to run."""
        return self._cycle

    def period_for(self, pid: PidDescriptor) -> int:
        if pid.priority is PidPriority.HIGH:
            return 1
        return self._periods.get(pid.name, self._default_period)

    def due(self, cycle: int | None = None) -> list[PidDescriptor]:
        """PIDs to query in *cycle* (defaults to the next cycle), in table order."""
        index = self._cycle if cycle is None else cycle
        return [pid for pid in self._pids if index % self.period_for(pid) == 0]

    async def _query_one(self, pid: PidDescriptor, query: QueryFn) -> DecodedSample:
        try:
            response = await asyncio.wait_for(query(pid), timeout=self._timeout)
        except TimeoutError:
            _logger.debug("PID %s timed out after %.1fs", pid.name, self._timeout)
            return DecodedSample.failed(pid.name)
        except CarSocTransportError as exc:
            _logger.debug("PID %s transport failure: %s", pid.name, exc)
            return DecodedSample.failed(pid.name)
        return decode_sample(response, pid)

    async def run_cycle(self, query: QueryFn) -> list[DecodedSample]:
        """Run the next cycle and advance the counter.

        The counter advances even if the cycle is cancelled part-way, so
        a restarted loop never re-polls the same cycle index.
        """
        due = self.due()
        samples: list[DecodedSample] = []
        try:
            for position, pid in enumerate(due):
                if position and self._inter_command_delay > 0:
                    await asyncio.sleep(self._inter_command_delay)
                samples.append(await self._query_one(pid, query))
        finally:
            self._cycle += 1
        _logger.debug(
            "Cycle %d polled %d/%d PIDs (%d failed)",
            self._cycle - 1,
            len(due),
            len(self._pids),
            sum(1 for sample in samples if not sample.ok),
        )
        return samples
