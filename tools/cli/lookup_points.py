#!/usr/bin/env python3
"""Look up the current points total of one or more wallets."""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from packages.relics.errors import FetchError
from packages.relics.normalization import normalize_wallet
from packages.relics.points import PointsClient
from tools.cli.clilib import (
    EXIT_CONFIG,
    EXIT_FATAL,
    EXIT_OK,
    add_common_arguments,
    configure_logging,
    load_config,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relictool lookup-points",
        description="Print the points total of each given wallet address.",
    )
    parser.add_argument("addresses", nargs="+", metavar="ADDRESS", help="Wallet address (0x...)")
    add_common_arguments(parser)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = load_config(args)
    if config is None:
        return EXIT_CONFIG

    client = PointsClient(base_url=config.points_api_base, timeout=config.request_timeout)
    failed = 0
    try:
        for raw in args.addresses:
            address = normalize_wallet(raw)
            if not address:
                print(f"Error: not a wallet address: {raw!r}", file=sys.stderr)
                failed += 1
                continue
            try:
                total = client.lookup(address)
            except FetchError as exc:
                print(f"Error: {address}: {exc.message}", file=sys.stderr)
                failed += 1
                continue
            print(f"{address}\t{total}")
    finally:
        client.close()

    return EXIT_FATAL if failed else EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
