#!/usr/bin/env python3
"""Build iq-snapshot.json: points total for every relic holder."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from packages.relics.errors import RelicsError
from packages.relics.pipeline import build_points
from packages.relics.points import PointsClient
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
        prog="relictool build-points",
        description="Fetch the points total of each wallet in relic-holders.json.",
    )
    parser.add_argument(
        "--input",
        default=None,
        help="Default: <snapshot dir>/relic-holders.json",
    )
    parser.add_argument("--output", default=None, help="Default: <snapshot dir>/iq-snapshot.json")
    add_common_arguments(parser)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = load_config(args)
    if config is None:
        return EXIT_CONFIG

    input_path = Path(args.input) if args.input else config.snapshot_dir / "relic-holders.json"
    output_path = Path(args.output) if args.output else config.snapshot_dir / "iq-snapshot.json"

    client = PointsClient(
        base_url=config.points_api_base,
        timeout=config.request_timeout,
        pool_size=config.concurrency,
    )
    try:
        run, snapshot = build_points(
            input_path,
            output_path,
            client,
            concurrency=config.concurrency,
        )
    except (RelicsError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        client.close()

    print_summary(run)
    print(f"Wrote {output_path} with {len(snapshot)} addresses.")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
