"""Follow a ledger's chain tip and report new blocks at a fixed rate."""

from .errors import (
    DeltaError,
    DeltaTransportFailure,
    IncompleteBlock,
    IncompleteBlockError,
    MissingBlock,
    StartingPointUnavailable,
    TooManyBlocks,
    TransportError,
)
from .delta import fetch_delta
from .ledger import LedgerClient, RPCLedgerClient
from .model import BlockRecord
from .poller import BlockPoller, ConcurrentPollError
from .scheduler import Continue, FixedRateScheduler, Stop
from .watcher import BlockWatcher

__all__ = [
    "BlockPoller",
    "BlockRecord",
    "BlockWatcher",
    "ConcurrentPollError",
    "Continue",
    "DeltaError",
    "DeltaTransportFailure",
    "FixedRateScheduler",
    "IncompleteBlock",
    "IncompleteBlockError",
    "LedgerClient",
    "MissingBlock",
    "RPCLedgerClient",
    "StartingPointUnavailable",
    "Stop",
    "TooManyBlocks",
    "TransportError",
    "fetch_delta",
]
