"""
Bounded concurrency helpers.

Work submitted here must not touch the ORM: callers run collaborator I/O in
the pool and persist results on their own thread.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

logger = logging.getLogger(__name__)


@dataclass
class Settled:
    """Outcome of one item in an all-settled run."""

    index: int
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_concurrently(*calls: Callable[[], Any]) -> list[Any]:
    """
    Run independent zero-argument calls in parallel and return their results in order.

    Every call is allowed to finish; the first failure (by position) is then
    re-raised.
    """
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, len(calls))) as ex:
        futures = [ex.submit(call) for call in calls]
        concurrent.futures.wait(futures)
    for future in futures:
        error = future.exception()
        if error is not None:
            raise error
    return [future.result() for future in futures]


def settle_all(
    func: Callable[[Any], Any],
    items: Sequence[Any],
    max_concurrency: int,
    start_index: int = 0,
) -> list[Settled]:
    """
    Apply ``func`` to every item with at most ``max_concurrency`` in flight.

    Never raises for a failing item: each failure is captured on its
    ``Settled`` entry. Results are returned ordered by index.
    """
    if not items:
        return []

    settled: dict[int, Settled] = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_concurrency)) as ex:
        futures = {
            ex.submit(func, item): start_index + offset for offset, item in enumerate(items)
        }
        for future in concurrent.futures.as_completed(futures):
            index = futures[future]
            error = future.exception()
            if error is not None:
                logger.error(f"Item {index} failed: {error}", exc_info=error)
                settled[index] = Settled(index=index, error=error)
            else:
                settled[index] = Settled(index=index, value=future.result())
    return [settled[index] for index in sorted(settled)]


def chunked(items: Sequence[Any], size: int) -> list[tuple[int, Sequence[Any]]]:
    """Split ``items`` into ``(start_index, chunk)`` pairs of at most ``size`` items."""
    size = max(1, size)
    return [(start, items[start : start + size]) for start in range(0, len(items), size)]
