"""Per-item fan-out with explicit success/failure outcomes.

Every sub-fetch produces a FetchOutcome; callers filter to successes. A
failed item never aborts the join.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from core.exceptions import TransientFetchFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class FetchOutcome(Generic[R]):
    key: str
    value: Optional[R] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _run_one(key: str, fn: Callable[[T], R], item: T) -> FetchOutcome[R]:
    try:
        return FetchOutcome(key=key, value=fn(item))
    except TransientFetchFailure as exc:
        logger.debug("Fetch failed for %s: %s", key, exc)
        return FetchOutcome(key=key, error=exc)


def fan_out(
    fn: Callable[[T], R],
    items: Sequence[T],
    key: Callable[[T], str] = str,
    max_workers: int = 8,
) -> List[FetchOutcome[R]]:
    """Run ``fn`` over ``items`` concurrently; one outcome per item, input order kept."""
    if not items:
        return []
    workers = max(1, min(max_workers, len(items)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_run_one, key(item), fn, item) for item in items]
        return [future.result() for future in futures]


def successes(outcomes: Sequence[FetchOutcome[Any]]) -> List[Any]:
    """Values of successful outcomes, in order."""
    failed = [o.key for o in outcomes if not o.ok]
    if failed:
        logger.info("Skipped %d failed fetch(es): %s", len(failed), ", ".join(failed))
    return [o.value for o in outcomes if o.ok]


__all__ = ["FetchOutcome", "fan_out", "successes"]
