"""Relics snapshot pipeline package."""

from .http_client import CancelRegistry, HttpClient
from .pool import PoolResult, run_pool
from .metadata import TokenMetadata, TokenMetadataIndex, resolve_document, resolve_traits
from .aggregation import HolderAsset, HolderCounts, aggregate_assets, aggregate_holders, merge_counts
from .opensea import CrawlResult, OpenSeaCrawler
from .phosphor import PhosphorClient
from .points import PointsClient
from .config import SnapshotConfig
from .pipeline import (
    PipelineRun,
    PipelineState,
    build_holders,
    build_points,
    build_relic_holders,
    crawl_relic_holders,
)

__all__ = [
    "HttpClient",
    "CancelRegistry",
    "PoolResult",
    "run_pool",
    "TokenMetadata",
    "TokenMetadataIndex",
    "resolve_document",
    "resolve_traits",
    "HolderAsset",
    "HolderCounts",
    "aggregate_assets",
    "aggregate_holders",
    "merge_counts",
    "CrawlResult",
    "OpenSeaCrawler",
    "PhosphorClient",
    "PointsClient",
    "SnapshotConfig",
    "PipelineRun",
    "PipelineState",
    "build_holders",
    "build_points",
    "build_relic_holders",
    "crawl_relic_holders",
]
