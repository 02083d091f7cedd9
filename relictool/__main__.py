"""Module entrypoint for running relictool commands.

Usage: python -m relictool <command> [options]
"""

from __future__ import annotations

import sys
from typing import Optional

from tools.cli.build_holders import main as build_holders_main
from tools.cli.build_points import main as build_points_main
from tools.cli.build_relic_holders import main as build_relic_holders_main
from tools.cli.crawl import main as crawl_main
from tools.cli.lookup_points import main as lookup_points_main

COMMANDS = {
    "crawl": crawl_main,
    "build-holders": build_holders_main,
    "build-relic-holders": build_relic_holders_main,
    "build-points": build_points_main,
    "lookup-points": lookup_points_main,
}


def print_usage() -> None:
    """Print CLI usage information."""
    print("relictool - Relics holder snapshot builder")
    print("")
    print("Usage: relictool <command> [options]")
    print("       python -m relictool <command> [options]")
    print("")
    print("Commands:")
    print("  crawl                Crawl the OpenSea listing into relic-holders.json")
    print("  build-holders        Convert snapshot.json holder rows into holders.json")
    print("  build-relic-holders  Resolve holders.json tokens via Phosphor into relic-holders.json")
    print("  build-points         Fetch points totals for relic holders into iq-snapshot.json")
    print("  lookup-points        Print the current points total of given wallets")
    print("")
    print("Options:")
    print("  -h, --help           Show this help message")
    print("  --version            Show version information")
    print("")
    print("Environment:")
    print("  CONCURRENCY, REQUEST_TIMEOUT_MS, RELIC_SNAPSHOT_DELAY, RELIC_SNAPSHOT_LIMIT,")
    print("  OPENSEA_API_KEY, RELICS_SNAPSHOT_DIR")


def print_version() -> None:
    """Print version information."""
    from relictool import __version__
    print(f"relictool {__version__}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entrypoint."""
    if argv is None:
        argv = sys.argv[1:]

    if len(argv) < 1:
        print_usage()
        return 1

    command = argv[0]

    if command in ("-h", "--help"):
        print_usage()
        return 0

    if command == "--version":
        print_version()
        return 0

    handler = COMMANDS.get(command)
    if handler is None:
        print(f"Unknown command: {command}")
        print_usage()
        return 1
    return handler(argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
