"""Command-line entry point for the BalanceBridge client."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .client import BridgeClient
from .config import BridgeConfig
from .errors import BridgeError
from .protocol import BitcoinLookupResult


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="balancebridge", description="BalanceBridge client")
    parser.add_argument("--data-dir", type=Path, default=None, help="Directory holding identity and pairing")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument("--timeout", type=float, default=None, help="Lookup timeout in seconds")
    parser.add_argument("--encrypt", action="store_true", help="Encrypt request payloads (NIP-44)")

    commands = parser.add_subparsers(dest="command", required=True)

    pair = commands.add_parser("pair", help="Store a pairing payload")
    pair.add_argument("payload", help="Pairing JSON, or @path to read it from a file")

    commands.add_parser("unpair", help="Remove the stored pairing")
    commands.add_parser("show", help="Show identity and pairing")
    commands.add_parser("identity", help="Print this client's public key")

    lookup = commands.add_parser("lookup", help="Look up an address or extended public key")
    lookup.add_argument("query")
    lookup.add_argument("--json", action="store_true", help="Print the result as JSON")
    return parser


def build_config(args: argparse.Namespace) -> BridgeConfig:
    config = BridgeConfig.from_env()
    if args.data_dir is not None:
        config.data_dir = args.data_dir
    if args.timeout is not None:
        config.request_timeout = args.timeout
    if args.encrypt:
        config.encrypt_payloads = True
    config.validate()
    return config


def format_result(result: BitcoinLookupResult) -> str:
    lines = [
        f"Confirmed: {result.confirmed_balance} sats",
        f"Unconfirmed: {result.unconfirmed_balance} sats",
        f"Transactions: {len(result.transactions)}",
    ]
    lines.extend(f"  {tx.txid}" for tx in result.transactions)
    return "\n".join(lines)


def _read_payload(raw: str) -> str:
    if raw.startswith("@"):
        return Path(raw[1:]).read_text(encoding="utf-8")
    return raw


async def run(args: argparse.Namespace) -> int:
    client = BridgeClient(build_config(args))

    if args.command == "identity":
        print(client.public_key)
        return 0

    if args.command == "show":
        print(json.dumps(client.get_status(), indent=2))
        return 0

    if args.command == "pair":
        record = await client.pair(_read_payload(args.payload))
        print(f"Paired with node {record.server_public_key} via {len(record.relays)} relay(s)")
        return 0

    if args.command == "unpair":
        await client.unpair()
        print("Pairing removed")
        return 0

    async with client:
        result = await client.lookup(args.query)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(format_result(result))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except (BridgeError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
