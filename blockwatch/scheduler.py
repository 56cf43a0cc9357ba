"""Fixed-rate driver for asynchronous actions.

:class:`FixedRateScheduler` repeatedly awaits an action and keeps the start of
consecutive invocations at least ``period`` apart. The wait after each
iteration is shortened by however long the action took; an action slower than
the period is followed immediately by the next one, without any catch-up
burst afterwards.

A stop request is honoured before the next invocation and also cuts short a
wait that is already in progress. An action that is running is always allowed
to finish.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Continue:
    """Returned by an action to request another iteration."""


@dataclass(frozen=True)
class Stop:
    """Returned by an action to end the loop; ``reason`` is handed back to the caller."""

    reason: Any = None


ControlSignal = Union[Continue, Stop]
Action = Callable[[], Awaitable[ControlSignal]]


class FixedRateScheduler:
    """Run an action in a loop with a minimum spacing between invocation starts."""

    def __init__(
        self,
        period: Union[float, timedelta],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        seconds = period.total_seconds() if isinstance(period, timedelta) else float(period)
        if seconds <= 0:
            raise ValueError(f"period must be positive, got {period!r}")
        self.period = seconds
        self.clock = clock
        self._stop_requested = False
        self._stop_reason: Any = None
        # created per run so the scheduler is not tied to one event loop
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self, reason: Any = None) -> None:
        """Ask ``run_forever`` to return ``reason`` at the next opportunity."""

        if self._stop_requested:
            return
        self._stop_requested = True
        self._stop_reason = reason
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_forever(self, action: Action) -> Any:
        """Invoke ``action`` until it returns :class:`Stop` or a stop is requested.

        Exceptions raised by the action are not caught: they end the loop
        immediately, without waiting.
        """

        self._stop_event = asyncio.Event()
        if self._stop_requested:
            self._stop_event.set()
        try:
            while not self._stop_requested:
                started = self._read_clock()
                signal = await action()
                if isinstance(signal, Stop):
                    return signal.reason
                if not isinstance(signal, Continue):
                    raise TypeError(f"action must return Continue or Stop, got {signal!r}")
                await self._pause(self._remaining(started))
            return self._stop_reason
        finally:
            self._stop_event = None

    def _read_clock(self) -> Optional[float]:
        try:
            return self.clock()
        except Exception:
            logger.warning("Clock read failed; next wait uses the full period", exc_info=True)
            return None

    def _remaining(self, started: Optional[float]) -> float:
        finished = self._read_clock()
        if started is None or finished is None:
            return self.period
        elapsed = finished - started
        if elapsed < 0:
            logger.warning(
                "Clock went backwards by %.3fs; waiting the full period of %.3fs",
                -elapsed,
                self.period,
            )
            return self.period
        return max(self.period - elapsed, 0.0)

    async def _pause(self, delay: float) -> None:
        if delay <= 0:
            # yield once so a tight loop never starves other tasks
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
