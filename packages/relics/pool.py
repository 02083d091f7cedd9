"""Bounded worker pool over an ordered list of work items."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Generic, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONCURRENCY = 8


@dataclass
class PoolResult:
    """Outcome of one :func:`run_pool` call."""

    items_total: int = 0
    workers: int = 0
    completed: int = 0
    # (index, exception) for work functions that raised instead of handling
    errors: list[tuple[int, BaseException]] = field(default_factory=list)


class _IndexClaim(Generic[T]):
    """Shared monotonically increasing index; each value is handed out once."""

    def __init__(self, items: Sequence[T]):
        self._items = items
        self._next = 0
        self._lock = threading.Lock()

    def claim(self) -> int:
        with self._lock:
            idx = self._next
            if idx >= len(self._items):
                return -1
            self._next += 1
            return idx


def run_pool(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], None],
) -> PoolResult:
    """Run ``worker(item, index)`` once per item with at most ``limit`` in flight.

    Workers claim the next unprocessed index as soon as they are free, so
    completion order is unspecified while every index is claimed exactly
    once. The call returns when all items have finished. ``worker`` is
    expected to handle its own failures; anything that escapes is logged and
    recorded in ``PoolResult.errors`` without stopping the other workers.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")

    result = PoolResult(items_total=len(items))
    if not items:
        return result

    workers = min(limit, len(items))
    result.workers = workers
    claims: _IndexClaim[T] = _IndexClaim(items)
    result_lock = threading.Lock()

    def _loop() -> None:
        while True:
            idx = claims.claim()
            if idx < 0:
                return
            try:
                worker(items[idx], idx)
            except Exception as exc:
                logger.error("Unhandled error in pool worker for item %d: %s", idx, exc)
                with result_lock:
                    result.errors.append((idx, exc))
            with result_lock:
                result.completed += 1

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="relics-pool") as executor:
        futures = [executor.submit(_loop) for _ in range(workers)]
        for future in futures:
            future.result()

    result.errors.sort(key=lambda pair: pair[0])
    return result
