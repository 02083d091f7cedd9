"""Shared argparse/logging helpers for the snapshot commands."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from packages.relics.config import SnapshotConfig
from packages.relics.errors import ConfigError
from packages.relics.pipeline import PipelineRun

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Concurrent requests (default: $CONCURRENCY or 8)",
    )
    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=None,
        help="Per-request timeout in ms (default: $REQUEST_TIMEOUT_MS or 15000)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    # urllib3 logs every pooled connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config(args: argparse.Namespace, **overrides) -> Optional[SnapshotConfig]:
    """Environment config with CLI overrides; prints and returns None when invalid."""
    try:
        config = SnapshotConfig.from_env().with_overrides(
            concurrency=getattr(args, "concurrency", None),
            request_timeout_ms=getattr(args, "timeout_ms", None),
            **overrides,
        )
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return None
    logger.debug(f"Config: {config.to_dict()}")
    return config


def print_summary(run: PipelineRun) -> None:
    for line in run.summary_lines():
        print(line)
