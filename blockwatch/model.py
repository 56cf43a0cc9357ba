"""Domain models for blocks discovered by the poller.

A :class:`BlockRecord` is the only value handed to callers: the block hash, its
height, and the identifiers of the transactions it carries in node order.
Payloads are decoded from the JSON a Bitcoin-Core style node returns for
``getblock``; anything lacking a hash or a height is rejected rather than
defaulted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Tuple

from .errors import IncompleteBlockError


@dataclass(frozen=True)
class BlockRecord:
    """A complete block as seen by the poller."""

    hash: str
    height: int
    transaction_ids: Tuple[str, ...] = ()

    @classmethod
    def from_rpc(cls, payload: Mapping[str, Any]) -> "BlockRecord":
        """Decode a ``getblock`` payload (verbosity 1 or 2).

        Raises :class:`IncompleteBlockError` when the hash or the height is
        absent; a missing field is never read as an empty hash or height 0.
        """

        if not isinstance(payload, Mapping):
            raise IncompleteBlockError(f"block payload is not a JSON object: {type(payload).__name__}")
        block_hash = payload.get("hash")
        height = payload.get("height")
        if not block_hash or height is None:
            raise IncompleteBlockError(
                f"block payload lacks {'hash' if not block_hash else 'height'}"
            )
        if isinstance(height, bool) or not isinstance(height, int):
            raise IncompleteBlockError(f"block height is not an integer: {height!r}")

        txids = []
        for entry in payload.get("tx") or []:
            # verbosity=2 returns full transaction objects
            if isinstance(entry, Mapping):
                entry = entry.get("txid") or entry.get("hash")
            if entry:
                txids.append(str(entry))
        return cls(hash=str(block_hash), height=height, transaction_ids=tuple(txids))

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "height": self.height,
            "transaction_ids": list(self.transaction_ids),
        }
