#!/usr/bin/env python3
"""Build holders.json ({address: [token ids]}) from a bulk holder export."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from packages.relics.errors import RelicsError
from packages.relics.pipeline import build_holders
from tools.cli.clilib import (
    EXIT_CONFIG,
    EXIT_FATAL,
    EXIT_OK,
    configure_logging,
    load_config,
    print_summary,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relictool build-holders",
        description="Convert snapshot.json holder rows into holders.json.",
    )
    parser.add_argument("--input", default=None, help="Default: <snapshot dir>/snapshot.json")
    parser.add_argument("--output", default=None, help="Default: <snapshot dir>/holders.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = load_config(args)
    if config is None:
        return EXIT_CONFIG

    input_path = Path(args.input) if args.input else config.snapshot_dir / "snapshot.json"
    output_path = Path(args.output) if args.output else config.snapshot_dir / "holders.json"

    try:
        run, holders = build_holders(input_path, output_path)
    except (RelicsError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FATAL

    print_summary(run)
    print(f"Wrote {output_path} with {len(holders)} addresses.")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
