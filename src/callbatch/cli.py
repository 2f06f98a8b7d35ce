"""
Command-line interface for the Call Batcher.

Provides commands for running batched reads against an endpoint.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

from callbatch import __version__
from callbatch.config import CallBatchConfig, set_config
from callbatch.contract.contract import Contract
from callbatch.core.aggregator import BatchAggregator
from callbatch.core.options import MulticallOptions
from callbatch.log import setup_logging
from callbatch.node.interface import Provider
from callbatch.node.jsonrpc import JsonRpcProvider


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="callbatch",
        description="Batch EVM contract calls through Multicall3",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Call command
    call_parser = subparsers.add_parser("call", help="Run the static calls of a batch file")
    call_parser.add_argument(
        "batch_file",
        help="JSON file listing the calls (tag, address, abi, method, args)",
    )
    call_parser.add_argument(
        "--rpc-url",
        help="JSON-RPC endpoint URL",
    )
    call_parser.add_argument(
        "--multicall-address",
        help="Multicall3 address (default: canonical deployment)",
    )
    call_parser.add_argument(
        "--batch-size",
        type=int,
        default=50,
        help="Maximum calls per aggregate call (default: 50)",
    )
    call_parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    call_parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs in JSON format",
    )

    # Info command
    info_parser = subparsers.add_parser("info", help="Show endpoint information")
    info_parser.add_argument(
        "--rpc-url",
        help="JSON-RPC endpoint URL",
    )
    info_parser.add_argument(
        "--log-level",
        default="WARNING",
    )

    return parser


def build_config(args: argparse.Namespace) -> CallBatchConfig:
    """Create the configuration from command-line overrides."""
    overrides: Dict[str, Any] = {}
    if getattr(args, "rpc_url", None):
        overrides["rpc_url"] = args.rpc_url
    if getattr(args, "multicall_address", None):
        overrides["multicall_address"] = args.multicall_address
    if getattr(args, "batch_size", None):
        overrides["static_calls_batch_limit"] = args.batch_size
    return CallBatchConfig(**overrides)


def to_jsonable(value: Any) -> Any:
    """Convert decoded ABI values into JSON-compatible ones."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def load_batch(path: Path, provider: Provider, aggregator: BatchAggregator) -> List[Any]:
    """
    Queue the calls of a batch file on an aggregator.

    ABI paths are resolved relative to the batch file.

    Returns:
        The tags in file order
    """
    batch = json.loads(path.read_text())
    abis: Dict[str, Any] = {}
    tags = []

    for index, entry in enumerate(batch["calls"]):
        abi = entry["abi"]
        if isinstance(abi, str):
            if abi not in abis:
                abis[abi] = json.loads((path.parent / abi).read_text())
            abi = abis[abi]

        contract = Contract(abi, entry["address"], provider)
        call = contract.get_call(entry["method"], entry.get("args", []))
        tags.append(aggregator.add(call, entry.get("tag", index)))

    return tags


async def run_calls(args: argparse.Namespace) -> int:
    """Run a batch file and print the results as JSON."""
    config = build_config(args)
    set_config(config)

    provider = JsonRpcProvider(config=config)
    aggregator = BatchAggregator(provider, MulticallOptions(), config=config)

    try:
        tags = load_batch(Path(args.batch_file), provider, aggregator)
        success = await aggregator.run()
    finally:
        await provider.disconnect()

    output = [
        {
            "tag": tag,
            "success": aggregator.is_success(tag),
            "result": to_jsonable(aggregator.get(tag)),
        }
        for tag in tags
    ]
    print(json.dumps(output, indent=2))
    return 0 if success else 2


async def show_info(args: argparse.Namespace) -> int:
    """Print chain id, block number and fee data of the endpoint."""
    config = build_config(args)
    provider = JsonRpcProvider(config=config)

    try:
        chain_id = await provider.get_chain_id()
        block_number = await provider.get_block_number()
        fee_data = await provider.get_fee_data()
    finally:
        await provider.disconnect()

    print(f"Endpoint: {provider.url}")
    print(f"Chain ID: {chain_id}")
    print(f"Block: {block_number}")
    print(f"Gas price: {fee_data.gas_price}")
    if fee_data.supports_eip1559:
        print(f"Max fee: {fee_data.max_fee_per_gas}")
        print(f"Max priority fee: {fee_data.max_priority_fee_per_gas}")
    return 0


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Setup logging
    log_level = getattr(args, "log_level", "WARNING")
    log_json = getattr(args, "log_json", False)
    setup_logging(log_level, log_json)

    if args.command == "call":
        sys.exit(asyncio.run(run_calls(args)))
    elif args.command == "info":
        sys.exit(asyncio.run(show_info(args)))


if __name__ == "__main__":
    main()
