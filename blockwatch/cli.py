"""Command line interface for following a node's chain tip."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Sequence

from .config import ConfigurationError, load_rpc_config, load_watch_config
from .errors import DeltaError, TransportError
from .ledger import RPCLedgerClient
from .model import BlockRecord
from .poller import BlockPoller
from .rpc_client import NodeRPCClient, RPCError, format_rpc_hint
from .scheduler import FixedRateScheduler
from .watcher import BlockWatcher

logger = logging.getLogger(__name__)

COMPACT_JSON_SEPARATORS = (",", ":")


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Follow a node's chain tip and report new blocks")
    parser.add_argument("--config", default=None, help="Path to a YAML config (default: ~/.blockwatch.yaml)")
    parser.add_argument("--rpc-endpoint", default=None, help="RPC endpoint URL, e.g. http://127.0.0.1:14022")
    parser.add_argument("--rpc-user", default=None, help="RPC username")
    parser.add_argument("--rpc-password", default=None, help="RPC password")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch_parser = subparsers.add_parser(
        "watch", help="poll for new blocks and print their transaction ids"
    )
    watch_parser.add_argument(
        "--start-height",
        type=int,
        default=None,
        help="Report blocks above this height (default: the tip at launch)",
    )
    watch_parser.add_argument(
        "--period",
        type=float,
        default=None,
        help="Minimum seconds between poll starts (default: 10)",
    )
    watch_parser.add_argument(
        "--until-height", type=int, default=None, help="Stop once this height has been reported"
    )
    watch_parser.add_argument(
        "--max-blocks", type=int, default=None, help="Refuse polls returning more blocks than this"
    )
    watch_parser.add_argument(
        "--poll-timeout", type=float, default=None, help="Deadline in seconds for a single poll"
    )
    watch_parser.add_argument(
        "--max-failures",
        type=int,
        default=None,
        help="Exit after this many consecutive failed polls (default: retry forever)",
    )

    subparsers.add_parser("latest", help="print the block at the current tip")
    subparsers.add_parser("height", help="print the current block height")
    return parser


def _rpc_from_args(args: argparse.Namespace) -> NodeRPCClient:
    overrides = {
        "endpoint": args.rpc_endpoint,
        "user": args.rpc_user,
        "password": args.rpc_password,
    }
    config = load_rpc_config(config_path=args.config, overrides=overrides)
    return NodeRPCClient(config)


def _emit(block: BlockRecord) -> None:
    print(json.dumps(block.to_json_dict(), separators=COMPACT_JSON_SEPARATORS), flush=True)


async def _watch(args: argparse.Namespace, ledger: RPCLedgerClient) -> Any:
    watch_config = load_watch_config(
        config_path=args.config,
        overrides={
            "start_height": args.start_height,
            "period_seconds": args.period,
            "max_blocks_per_poll": args.max_blocks,
            "max_consecutive_failures": args.max_failures,
        },
    )
    start_height = watch_config.start_height
    if start_height is None:
        start_height = await ledger.current_height()
    poller = BlockPoller(ledger, start_height, max_blocks=watch_config.max_blocks_per_poll)
    watcher = BlockWatcher(
        poller,
        FixedRateScheduler(watch_config.period_seconds),
        _emit,
        poll_timeout=args.poll_timeout,
        max_consecutive_failures=watch_config.max_consecutive_failures,
        until_height=args.until_height,
    )
    return await watcher.run()


def cmd_watch(args: argparse.Namespace) -> None:
    ledger = RPCLedgerClient(_rpc_from_args(args))
    try:
        asyncio.run(_watch(args, ledger))
    finally:
        ledger.rpc.close()


def cmd_latest(args: argparse.Namespace) -> None:
    rpc = _rpc_from_args(args)
    block = BlockRecord.from_rpc(rpc.getblock(rpc.getbestblockhash()))
    print(json.dumps(block.to_json_dict(), indent=2))


def cmd_height(args: argparse.Namespace) -> None:
    rpc = _rpc_from_args(args)
    print(rpc.getblockcount())


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level))
    try:
        if args.command == "watch":
            cmd_watch(args)
        elif args.command == "latest":
            cmd_latest(args)
        elif args.command == "height":
            cmd_height(args)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except RPCError as exc:
        hint = format_rpc_hint(exc)
        message = f"error: {exc}\n" + (f"Hint: {hint}\n" if hint else "")
        parser.exit(1, message)
    except (CLIError, ConfigurationError, DeltaError, TransportError, ValueError) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
