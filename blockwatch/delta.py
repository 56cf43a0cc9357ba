"""Compute and retrieve the blocks a ledger gained since a given height.

The fetcher is stateless: it receives the watermark as an argument and returns
either every block in ``(after, tip]`` in ascending order or raises a
:class:`~blockwatch.errors.DeltaError`. It applies a strict policy throughout:

* a watermark above the ledger tip is an error, not an empty delta;
* a height inside the range for which the ledger has no block is an error;
* a block payload missing its hash or height fails the whole delta.

Under this policy the returned heights are always contiguous, which lets the
poller advance its watermark to the last returned height without gaps.
"""

from __future__ import annotations

import asyncio
import logging
import struct
import sys
from typing import Any, List, Optional, Tuple

from .errors import (
    DeltaTransportFailure,
    IncompleteBlock,
    IncompleteBlockError,
    MissingBlock,
    StartingPointUnavailable,
    TooManyBlocks,
    TransportError,
)
from .ledger import LedgerClient
from .model import BlockRecord

logger = logging.getLogger(__name__)

# Largest list CPython can address: PY_SSIZE_T_MAX / sizeof(PyObject *).
PLATFORM_MAX_BLOCKS = sys.maxsize // struct.calcsize("P")


def _allocate(count: int, max_blocks: Optional[int]) -> List[Optional[BlockRecord]]:
    limit = PLATFORM_MAX_BLOCKS if max_blocks is None else min(max_blocks, PLATFORM_MAX_BLOCKS)
    if count > limit:
        raise TooManyBlocks(count, limit)
    try:
        return [None] * count
    except MemoryError as exc:
        raise TooManyBlocks(count, limit) from exc


async def _fetch_one(client: LedgerClient, height: int) -> Tuple[int, Any]:
    return height, await client.block_by_height(height)


async def fetch_delta(
    client: LedgerClient,
    after: int,
    *,
    max_blocks: Optional[int] = None,
) -> List[BlockRecord]:
    """Return the blocks above ``after`` up to the ledger's current height.

    All block requests are issued concurrently and joined before any result is
    inspected; results are placed by their requested height, so completion
    order never affects the output order.

    Args:
        client: The ledger to query.
        after: Height of the last block already seen.
        max_blocks: Optional cap on the delta size, checked before any block
            request is made.

    Raises:
        DeltaTransportFailure: The tip query or any block fetch failed.
        StartingPointUnavailable: ``after`` is above the ledger tip.
        TooManyBlocks: The delta exceeds ``max_blocks`` or the platform bound.
        MissingBlock: The ledger returned no block for a height in range.
        IncompleteBlock: A block payload lacked its hash or height.
    """

    try:
        current = await client.current_height()
    except TransportError as exc:
        raise DeltaTransportFailure(exc) from exc

    if current < after:
        raise StartingPointUnavailable(after, current)

    count = current - after
    blocks = _allocate(count, max_blocks)
    if not count:
        return []

    logger.debug("Fetching %d block(s) in (%d, %d]", count, after, current)
    responses = await asyncio.gather(
        *(_fetch_one(client, height) for height in range(after + 1, current + 1)),
        return_exceptions=True,
    )

    for height, response in zip(range(after + 1, current + 1), responses):
        if isinstance(response, TransportError):
            raise DeltaTransportFailure(response, height=height) from response
        if isinstance(response, BaseException):
            raise response

        requested, payload = response
        if payload is None:
            logger.error("Ledger tip is %d but it has no block at height %d", current, requested)
            raise MissingBlock(requested)
        try:
            record = BlockRecord.from_rpc(payload)
        except IncompleteBlockError as exc:
            logger.warning("Incomplete block payload at height %d: %s", requested, exc)
            raise IncompleteBlock(requested) from exc
        if record.height != requested:
            logger.error(
                "Ledger answered height %d with block %s at height %d",
                requested,
                record.hash,
                record.height,
            )
            raise MissingBlock(requested)
        blocks[requested - after - 1] = record

    return blocks  # type: ignore[return-value]
