#!/usr/bin/env python3
"""Build relic-holders.json by resolving every held token through Phosphor."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from packages.relics.errors import RelicsError
from packages.relics.phosphor import PhosphorClient
from packages.relics.pipeline import build_relic_holders
from tools.cli.clilib import (
    EXIT_CONFIG,
    EXIT_FATAL,
    EXIT_OK,
    add_common_arguments,
    configure_logging,
    load_config,
    print_summary,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relictool build-relic-holders",
        description="Fetch token metadata for holders.json and aggregate rarity counts.",
    )
    parser.add_argument("--input", default=None, help="Default: <snapshot dir>/holders.json")
    parser.add_argument(
        "--output",
        default=None,
        help="Default: <snapshot dir>/relic-holders.json",
    )
    parser.add_argument(
        "--metadata-output",
        default=None,
        help="Also write the resolved token metadata index to this path.",
    )
    add_common_arguments(parser)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = load_config(args)
    if config is None:
        return EXIT_CONFIG

    input_path = Path(args.input) if args.input else config.snapshot_dir / "holders.json"
    output_path = Path(args.output) if args.output else config.snapshot_dir / "relic-holders.json"

    client = PhosphorClient(
        collection_id=config.phosphor_collection_id,
        base_url=config.phosphor_api_base,
        timeout=config.request_timeout,
        pool_size=config.concurrency,
        rarities=config.rarities,
    )
    try:
        run, snapshot = build_relic_holders(
            input_path,
            output_path,
            client,
            concurrency=config.concurrency,
            metadata_output_path=args.metadata_output,
        )
    except (RelicsError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        client.client.close()

    print_summary(run)
    print(f"Wrote {output_path} with {len(snapshot)} wallets.")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
