"""Stateful cursor that hands out each new block exactly once."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .delta import fetch_delta
from .errors import DeltaTransportFailure
from .ledger import LedgerClient
from .model import BlockRecord

logger = logging.getLogger(__name__)


class ConcurrentPollError(RuntimeError):
    """Raised when ``poll_once`` is entered while another call is still running."""


class BlockPoller:
    """Track the last delivered height and fetch whatever came after it.

    The watermark only moves after a delta has been fetched completely; a
    failed poll leaves it untouched so the same call can simply be retried.
    Instances are not meant to be polled concurrently. Several pollers may share
    one ledger client.
    """

    def __init__(
        self,
        client: LedgerClient,
        start_height: int,
        *,
        max_blocks: Optional[int] = None,
    ) -> None:
        if isinstance(start_height, bool) or not isinstance(start_height, int) or start_height < 0:
            raise ValueError(f"start_height must be a non-negative integer, got {start_height!r}")
        self.client = client
        self.max_blocks = max_blocks
        self._watermark = start_height
        self._in_flight = False

    def current_watermark(self) -> int:
        """Height of the last block returned (or the start height)."""

        return self._watermark

    async def poll_once(self, timeout: Optional[float] = None) -> List[BlockRecord]:
        """Return the blocks produced since the previous successful poll.

        ``timeout`` bounds the whole call in seconds; expiry is reported as a
        :class:`~blockwatch.errors.DeltaTransportFailure`.
        """

        if self._in_flight:
            raise ConcurrentPollError("poll_once is already running on this poller")
        self._in_flight = True
        try:
            request = fetch_delta(self.client, self._watermark, max_blocks=self.max_blocks)
            if timeout is None:
                blocks = await request
            else:
                try:
                    blocks = await asyncio.wait_for(request, timeout)
                except asyncio.TimeoutError as exc:
                    raise DeltaTransportFailure(exc) from exc
        finally:
            self._in_flight = False

        if blocks:
            logger.debug(
                "Watermark %d -> %d (%d block(s))",
                self._watermark,
                blocks[-1].height,
                len(blocks),
            )
            self._watermark = blocks[-1].height
        return blocks
