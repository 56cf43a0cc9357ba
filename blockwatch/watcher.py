"""Watcher service following the ledger tip at a fixed rate."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple, Type

from .errors import DeltaError, StartingPointUnavailable
from .model import BlockRecord
from .poller import BlockPoller
from .scheduler import Continue, ControlSignal, FixedRateScheduler, Stop

logger = logging.getLogger(__name__)


class BlockWatcher:
    """Poll for new blocks on a schedule and emit each one via callback.

    Recoverable :class:`~blockwatch.errors.DeltaError` failures are logged and
    the next iteration retries from the same watermark. Errors listed in
    ``fatal_errors``, and any failure once more than
    ``max_consecutive_failures`` polls in a row have failed, end the watch by
    propagating out of :meth:`run`.
    """

    def __init__(
        self,
        poller: BlockPoller,
        scheduler: FixedRateScheduler,
        callback: Callable[[BlockRecord], None],
        *,
        poll_timeout: Optional[float] = None,
        max_consecutive_failures: Optional[int] = None,
        until_height: Optional[int] = None,
        fatal_errors: Tuple[Type[DeltaError], ...] = (StartingPointUnavailable,),
    ) -> None:
        self.poller = poller
        self.scheduler = scheduler
        self.callback = callback
        self.poll_timeout = poll_timeout
        self.max_consecutive_failures = max_consecutive_failures
        self.until_height = until_height
        self.fatal_errors = fatal_errors
        self.consecutive_failures = 0
        self.blocks_emitted = 0

    async def run(self) -> Any:
        """Watch until stopped; returns the stop reason."""

        logger.info(
            "Starting watcher at height %d (period %.3fs)",
            self.poller.current_watermark(),
            self.scheduler.period,
        )
        reason = await self.scheduler.run_forever(self.step)
        logger.info(
            "Watcher stopped at height %d after %d block(s): %s",
            self.poller.current_watermark(),
            self.blocks_emitted,
            reason,
        )
        return reason

    def stop(self, reason: Any = "stop requested") -> None:
        self.scheduler.request_stop(reason)

    async def step(self) -> ControlSignal:
        """Poll once and emit the new blocks in height order."""

        if self._reached_target():
            return Stop(f"reached height {self.until_height}")

        try:
            blocks = await self.poller.poll_once(timeout=self.poll_timeout)
        except self.fatal_errors:
            raise
        except DeltaError as exc:
            self.consecutive_failures += 1
            if (
                self.max_consecutive_failures is not None
                and self.consecutive_failures > self.max_consecutive_failures
            ):
                logger.error("Giving up after %d consecutive failed polls", self.consecutive_failures)
                raise
            logger.warning(
                "Poll failed at height %d (%d in a row): %s",
                self.poller.current_watermark(),
                self.consecutive_failures,
                exc,
            )
            return Continue()

        self.consecutive_failures = 0
        for block in blocks:
            if self.until_height is not None and block.height > self.until_height:
                break
            self.callback(block)
            self.blocks_emitted += 1
        if blocks:
            logger.info("Discovered %d new block(s) up to height %d", len(blocks), blocks[-1].height)

        if self._reached_target():
            return Stop(f"reached height {self.until_height}")
        return Continue()

    def _reached_target(self) -> bool:
        return self.until_height is not None and self.poller.current_watermark() >= self.until_height
