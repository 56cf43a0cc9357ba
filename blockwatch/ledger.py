"""Ledger client interface consumed by the delta fetcher.

Any object providing the two coroutines of :class:`LedgerClient` can back a
poller: an RPC adapter, an in-memory stub, or a cache. Clients must tolerate
concurrent calls because block fetches are issued together.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from .rpc_client import RPC_INVALID_PARAMETER, NodeRPCClient, RPCError

logger = logging.getLogger(__name__)


class LedgerClient(Protocol):
    """Read-only view of a ledger.

    Both methods raise :class:`~blockwatch.errors.TransportError` when the
    ledger cannot be reached.
    """

    async def current_height(self) -> int: ...

    async def block_by_height(self, height: int) -> Optional[Dict[str, Any]]:
        """Return the raw block payload at ``height``, or ``None`` if the ledger has none."""
        ...


class RPCLedgerClient:
    """Adapt the blocking :class:`NodeRPCClient` to :class:`LedgerClient`.

    RPC calls run in the default executor via :func:`asyncio.to_thread`, so
    the number of blocks fetched at once is bounded by the executor's worker
    count rather than by this class.
    """

    def __init__(self, rpc: NodeRPCClient, *, verbosity: int = 1) -> None:
        self.rpc = rpc
        self.verbosity = verbosity

    async def current_height(self) -> int:
        return await asyncio.to_thread(self.rpc.getblockcount)

    async def block_by_height(self, height: int) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._block_by_height, height)

    def _block_by_height(self, height: int) -> Optional[Dict[str, Any]]:
        try:
            block_hash = self.rpc.getblockhash(height)
        except RPCError as exc:
            if exc.code == RPC_INVALID_PARAMETER:
                logger.debug("Node has no block at height %d: %s", height, exc.message)
                return None
            raise
        return self.rpc.getblock(block_hash, verbosity=self.verbosity)
