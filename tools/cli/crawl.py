#!/usr/bin/env python3
"""Snapshot relic holders straight from the OpenSea collection listing."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from packages.relics.errors import RelicsError
from packages.relics.opensea import OpenSeaCrawler
from packages.relics.pipeline import crawl_relic_holders
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
        prog="relictool crawl",
        description="Crawl the collection listing and write wallet -> rarity counts.",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Output path (default: <snapshot dir>/relic-holders.json)",
    )
    parser.add_argument("--collection", default=None, help="Collection slug override.")
    parser.add_argument(
        "--page-delay-ms",
        type=int,
        default=None,
        help="Delay between pages in ms (default: $RELIC_SNAPSHOT_DELAY or 250)",
    )
    parser.add_argument(
        "--page-limit",
        type=int,
        default=None,
        help="Items per page (default: $RELIC_SNAPSHOT_LIMIT or 200)",
    )
    parser.add_argument("--max-pages", type=int, default=None, help="Stop after N pages.")
    add_common_arguments(parser)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.max_pages is not None and args.max_pages <= 0:
        print("Error: --max-pages must be a positive integer.", file=sys.stderr)
        return EXIT_CONFIG

    config = load_config(
        args,
        page_delay_ms=args.page_delay_ms,
        page_limit=args.page_limit,
        collection_slug=args.collection,
    )
    if config is None:
        return EXIT_CONFIG

    output = Path(args.output) if args.output else config.snapshot_dir / "relic-holders.json"
    crawler = OpenSeaCrawler(
        collection_slug=config.collection_slug,
        base_url=config.opensea_api_base,
        api_key=config.api_key,
        page_limit=config.page_limit,
        page_delay=config.page_delay,
        timeout=config.request_timeout,
        rarities=config.rarities,
        max_pages=args.max_pages,
    )

    try:
        run, snapshot = crawl_relic_holders(output, crawler)
    except (RelicsError, OSError) as exc:
        print(f"Failed to snapshot relic holders: {exc}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        crawler.client.close()

    print_summary(run)
    print(f"Snapshot saved to {output}")
    print(f"Wallets processed: {len(snapshot)}")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
