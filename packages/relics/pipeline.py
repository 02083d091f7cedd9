"""Snapshot pipeline runs.

Each job walks the same state machine::

    INIT -> LISTING -> [RESOLVING] -> AGGREGATING -> WRITING -> DONE
                 \\            \\             \\            \\
                  +------------+-------------+------------+--> FAILED

Per-item errors never move a run to FAILED. They are logged, recorded as
ItemFailure entries on the phase summary and excluded from the output.
Only pipeline-level errors (missing or corrupt input, an unfinished crawl,
a locked or unwritable output) fail the run.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Union

from .aggregation import aggregate_assets, aggregate_holders, total_relics
from .errors import ItemFailure, RelicsError
from .holders import build_holder_list, unique_token_ids
from .metadata import TokenMetadataIndex
from .normalization import normalize_holder_tokens, normalize_wallet
from .opensea import OpenSeaCrawler
from .phosphor import PhosphorClient
from .points import PointsClient
from .pool import DEFAULT_CONCURRENCY, run_pool
from .snapshot_io import exclusive_output, read_json_input, write_json_atomic

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

METADATA_PROGRESS_EVERY = 100
POINTS_PROGRESS_EVERY = 200


class PipelineState(str, Enum):
    INIT = "INIT"
    LISTING = "LISTING"
    RESOLVING = "RESOLVING"
    AGGREGATING = "AGGREGATING"
    WRITING = "WRITING"
    DONE = "DONE"
    FAILED = "FAILED"


_TRANSITIONS: dict[PipelineState, frozenset] = {
    PipelineState.INIT: frozenset({PipelineState.LISTING}),
    PipelineState.LISTING: frozenset(
        {PipelineState.RESOLVING, PipelineState.AGGREGATING, PipelineState.FAILED}
    ),
    PipelineState.RESOLVING: frozenset({PipelineState.AGGREGATING, PipelineState.FAILED}),
    PipelineState.AGGREGATING: frozenset({PipelineState.WRITING, PipelineState.FAILED}),
    PipelineState.WRITING: frozenset({PipelineState.DONE, PipelineState.FAILED}),
    PipelineState.DONE: frozenset(),
    PipelineState.FAILED: frozenset(),
}


@dataclass
class PhaseSummary:
    """Success/failure tally of one phase. Safe to update from pool workers."""

    name: str
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_success(self) -> int:
        with self._lock:
            self.succeeded += 1
            return self.succeeded

    def record_skip(self, count: int = 1) -> None:
        with self._lock:
            self.skipped += count

    def record_failure(self, key: str, exc: BaseException) -> ItemFailure:
        failure = ItemFailure.from_exception(self.name, key, exc)
        with self._lock:
            self.failed += 1
            self.failures.append(failure)
        logger.warning(f"Failed {failure.describe()}")
        return failure

    def summary_line(self) -> str:
        line = f"{self.name}: ok={self.succeeded}, failed={self.failed}"
        if self.skipped:
            line += f", skipped={self.skipped}"
        return line


class PipelineRun:
    """State and per-phase tallies of a single pipeline run."""

    def __init__(self, name: str, output_path: Optional[PathLike] = None):
        self.name = name
        self.output_path = Path(output_path) if output_path is not None else None
        self.state = PipelineState.INIT
        self.history: list[PipelineState] = [PipelineState.INIT]
        self.phases: dict[str, PhaseSummary] = {}
        self.error: Optional[BaseException] = None
        self.started_at = time.monotonic()
        self.finished_at: Optional[float] = None

    def advance(self, state: PipelineState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal pipeline transition {self.state.value} -> {state.value}")
        logger.debug(f"[{self.name}] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        if state in (PipelineState.DONE, PipelineState.FAILED):
            self.finished_at = time.monotonic()

    def fail(self, exc: BaseException) -> None:
        self.error = exc
        if self.state not in (PipelineState.DONE, PipelineState.FAILED):
            self.advance(PipelineState.FAILED)
        logger.error(f"[{self.name}] run failed: {exc}")

    def phase(self, name: str) -> PhaseSummary:
        if name not in self.phases:
            self.phases[name] = PhaseSummary(name=name)
        return self.phases[name]

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def elapsed(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    @property
    def failures(self) -> list[ItemFailure]:
        return [failure for phase in self.phases.values() for failure in phase.failures]

    def summary_lines(self) -> list[str]:
        lines = [phase.summary_line() for phase in self.phases.values()]
        lines.append(f"{self.name}: {self.state.value} in {self.elapsed:.1f}s")
        return lines

    @contextlib.contextmanager
    def guard(self) -> Iterator["PipelineRun"]:
        """Move the run to FAILED when a pipeline-level error escapes."""
        try:
            yield self
        except (RelicsError, OSError) as exc:
            self.fail(exc)
            raise


def _progress(done: int, total: int, started: float, every: int, label: str) -> None:
    if done % every == 0:
        logger.info(f"  {done}/{total} {label}... ({time.monotonic() - started:.1f}s)")


def _log_totals(snapshot: dict) -> None:
    relics = sum(total_relics(rarities) for rarities in snapshot.values())
    logger.info(f"Aggregated {relics} relics across {len(snapshot)} wallets")


def _write_output(run: PipelineRun, output_path: PathLike, payload: dict) -> None:
    run.advance(PipelineState.WRITING)
    write_json_atomic(output_path, payload)
    logger.info(f"Wrote {output_path}")
    run.advance(PipelineState.DONE)


def build_holders(input_path: PathLike, output_path: PathLike) -> tuple[PipelineRun, dict]:
    """Bulk holder export -> ``{address: [token ids]}``.

    Raises:
        FatalInputError: Input missing/corrupt or output locked
    """
    run = PipelineRun("build-holders", output_path)
    with run.guard():
        run.advance(PipelineState.LISTING)
        with exclusive_output(output_path):
            export = read_json_input(input_path)
            result = build_holder_list(export)
            listing = run.phase("listing")
            listing.succeeded = result.rows_total - result.rows_skipped
            listing.record_skip(result.rows_skipped)

            run.advance(PipelineState.AGGREGATING)
            _write_output(run, output_path, result.holders)

    logger.info(f"Holder list has {len(result.holders)} addresses.")
    return run, result.holders


def resolve_token_metadata(
    token_ids: list[str],
    client: PhosphorClient,
    concurrency: int,
    phase: PhaseSummary,
) -> TokenMetadataIndex:
    """Fetch metadata for each token id once, ``concurrency`` calls at a time."""
    index = TokenMetadataIndex()
    started = time.monotonic()
    total = len(token_ids)
    logger.info(f"Fetching metadata for {total} tokens with concurrency={concurrency}...")

    def _worker(token_id: str, _idx: int) -> None:
        try:
            metadata = client.fetch_token(token_id)
        except RelicsError as exc:
            phase.record_failure(token_id, exc)
            return
        index.set(token_id, metadata)
        done = phase.record_success()
        _progress(done, total, started, METADATA_PROGRESS_EVERY, "fetched")

    pool_result = run_pool(token_ids, concurrency, _worker)
    for idx, exc in pool_result.errors:
        phase.record_failure(token_ids[idx], exc)

    logger.info(f"Fetched: ok={phase.succeeded}, failed={phase.failed}")
    return index


def build_relic_holders(
    holders_path: PathLike,
    output_path: PathLike,
    client: PhosphorClient,
    concurrency: int = DEFAULT_CONCURRENCY,
    metadata_output_path: Optional[PathLike] = None,
) -> tuple[PipelineRun, dict]:
    """Two-pass pipeline: holder token list + per-token metadata -> holder counts.

    Raises:
        FatalInputError: Holder list missing/corrupt or output locked
    """
    run = PipelineRun("build-relic-holders", output_path)
    with run.guard():
        run.advance(PipelineState.LISTING)
        with exclusive_output(output_path):
            holders = normalize_holder_tokens(read_json_input(holders_path))
            token_ids = unique_token_ids(holders)
            run.phase("listing").succeeded = len(holders)

            run.advance(PipelineState.RESOLVING)
            index = resolve_token_metadata(token_ids, client, concurrency, run.phase("resolving"))
            if metadata_output_path is not None:
                write_json_atomic(metadata_output_path, index.to_dict())

            run.advance(PipelineState.AGGREGATING)
            snapshot = aggregate_holders(holders, index)
            _log_totals(snapshot)
            run.phase("aggregating").succeeded = len(snapshot)
            run.phase("aggregating").record_skip(len(holders) - len(snapshot))

            _write_output(run, output_path, snapshot)

    return run, snapshot


def crawl_relic_holders(
    output_path: PathLike,
    crawler: OpenSeaCrawler,
) -> tuple[PipelineRun, dict]:
    """Single-pass pipeline: listing with inline traits -> holder counts.

    Raises:
        CrawlError: The listing could not be walked to completion
        FatalInputError: Output locked by another run
    """
    run = PipelineRun("crawl", output_path)
    with run.guard():
        run.advance(PipelineState.LISTING)
        with exclusive_output(output_path):
            logger.info(f"Fetching relic holders for collection: {crawler.collection_slug}")
            result = crawler.crawl()
            listing = run.phase("listing")
            listing.succeeded = len(result.assets)
            listing.record_skip(result.items_skipped)

            run.advance(PipelineState.AGGREGATING)
            snapshot = aggregate_assets(result.assets)
            _log_totals(snapshot)
            run.phase("aggregating").succeeded = len(snapshot)

            _write_output(run, output_path, snapshot)

    logger.info(f"Wallets processed: {len(snapshot)}")
    return run, snapshot


def build_points(
    holders_path: PathLike,
    output_path: PathLike,
    client: PointsClient,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> tuple[PipelineRun, dict]:
    """Fetch a points total for every wallet of an aggregated snapshot.

    A wallet whose fetch fails permanently gets 0.

    Raises:
        FatalInputError: Holder snapshot missing/corrupt or output locked
    """
    run = PipelineRun("build-points", output_path)
    with run.guard():
        run.advance(PipelineState.LISTING)
        with exclusive_output(output_path):
            holders = read_json_input(holders_path)
            addresses = sorted({normalize_wallet(address) for address in holders} - {""})
            run.phase("listing").succeeded = len(addresses)

            run.advance(PipelineState.RESOLVING)
            phase = run.phase("resolving")
            results: dict[str, Union[int, float]] = {}
            results_lock = threading.Lock()
            started = time.monotonic()
            logger.info(
                f"Fetching points for {len(addresses)} addresses with concurrency={concurrency}..."
            )

            def _worker(address: str, _idx: int) -> None:
                try:
                    total = client.fetch_total(address)
                except RelicsError as exc:
                    total = 0
                    phase.record_failure(address, exc)
                else:
                    done = phase.record_success()
                    _progress(done, len(addresses), started, POINTS_PROGRESS_EVERY, "done")
                with results_lock:
                    results[address] = total

            pool_result = run_pool(addresses, concurrency, _worker)
            for idx, exc in pool_result.errors:
                phase.record_failure(addresses[idx], exc)
                results.setdefault(addresses[idx], 0)

            run.advance(PipelineState.AGGREGATING)
            snapshot = {address: results.get(address, 0) for address in addresses}

            _write_output(run, output_path, snapshot)

    logger.info(f"Wrote {output_path}. ok={phase.succeeded}, fail={phase.failed}")
    return run, snapshot
