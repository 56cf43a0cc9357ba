"""Error taxonomy shared by the ledger adapters, the delta fetcher and the poller."""

from __future__ import annotations


class TransportError(RuntimeError):
    """Raised by ledger clients when the ledger cannot be reached or answered badly."""


class DeltaError(RuntimeError):
    """Base class for failures computing or retrieving a block delta.

    A failed delta never advances a poller's watermark, so the same poll can be
    retried later without missing or duplicating blocks.
    """


class DeltaTransportFailure(DeltaError):
    """The tip query or one of the block fetches failed at the transport level."""

    def __init__(self, cause: BaseException, height: int | None = None) -> None:
        if height is None:
            message = f"Failed to query the ledger height: {cause}"
        else:
            message = f"Failed to fetch block {height}: {cause}"
        super().__init__(message)
        self.cause = cause
        self.height = height


class StartingPointUnavailable(DeltaError):
    """The watermark is above the height the ledger currently reports."""

    def __init__(self, after: int, current_height: int) -> None:
        super().__init__(
            f"Ledger reports height {current_height}, below the watermark {after}. "
            "The node may be resyncing or pointed at a different chain."
        )
        self.after = after
        self.current_height = current_height


class TooManyBlocks(DeltaError):
    """The delta is larger than can be held in memory (or than the caller allows)."""

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(
            f"Delta of {count} blocks exceeds the limit of {limit}; "
            "start from a more recent height or raise max_blocks."
        )
        self.count = count
        self.limit = limit


class MissingBlock(DeltaError):
    """The ledger returned no block for a height at or below its reported tip."""

    def __init__(self, height: int) -> None:
        super().__init__(f"Ledger has no block at height {height} although its tip is above it")
        self.height = height


class IncompleteBlock(DeltaError):
    """The ledger returned a block payload lacking its hash or height."""

    def __init__(self, height: int) -> None:
        super().__init__(f"Block payload for height {height} is missing its hash or height")
        self.height = height


class IncompleteBlockError(ValueError):
    """Raised when a block payload cannot be decoded into a complete record."""


__all__ = [
    "DeltaError",
    "DeltaTransportFailure",
    "IncompleteBlock",
    "IncompleteBlockError",
    "MissingBlock",
    "StartingPointUnavailable",
    "TooManyBlocks",
    "TransportError",
]
