"""Bounded parallel fetching.

Jira rate-limits aggressively, so independent calls are run in fixed-width
batches: at most `batch_size` requests are in flight, and a batch is fully
joined before the next one starts.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchOutcome:
    """Results in input order, plus how many calls failed."""

    results: List[Any] = field(default_factory=list)
    failures: int = 0

    @property
    def all_failed(self) -> bool:
        return bool(self.results) and self.failures == len(self.results)


def run_batched(func: Callable[[T], Any], items: Iterable[T], batch_size: int,
                default: Any = None, label: str = "fetch") -> BatchOutcome:
    """Call `func` on every item, `batch_size` at a time.

    A call that raises is logged and contributes `default` instead of its
    result, so one broken board or issue does not abort the whole run.

    Args:
        func: Function of one item
        items: Items to process
        batch_size: Maximum number of concurrent calls
        default: Value recorded for a failed call
        label: Name used in log messages

    Returns:
        BatchOutcome with one result per item, in input order
    """
    items = list(items)
    outcome = BatchOutcome(results=[default] * len(items))
    if not items:
        return outcome

    batch_size = max(1, batch_size)
    with ThreadPoolExecutor(max_workers=min(batch_size, len(items))) as executor:
        for offset in range(0, len(items), batch_size):
            batch = items[offset:offset + batch_size]
            futures = {
                executor.submit(func, item): offset + i
                for i, item in enumerate(batch)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    outcome.results[index] = future.result()
                except Exception as e:
                    outcome.failures += 1
                    logger.warning(f"{label} failed for {items[index]!r}: {e}")

    if outcome.failures:
        logger.info(f"{label}: {outcome.failures}/{len(items)} calls failed")
    return outcome
