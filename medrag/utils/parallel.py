"""
Async helpers for ingestion and retrieval.

- ``run_parallel_phases``: run independent coroutines concurrently and
  join on all of them (hybrid search sub-queries)
- ``process_in_batches``: sequential batches with an inter-batch delay to
  respect provider rate limits (embedding generation)
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_parallel_phases(*coroutines: Awaitable[R]) -> tuple:
    """
    Run multiple independent phases in parallel.

    Use this when operations have no data dependency on each other. The
    first exception propagates once raised.

    Example:
        >>> semantic, lexical = await run_parallel_phases(
        ...     engine.semantic_rows(query),
        ...     engine.lexical_rows(query),
        ... )
    """
    return tuple(await asyncio.gather(*coroutines))


def make_batches(
    items: List[T],
    max_items: int,
    max_weight: Optional[int] = None,
    weigh: Optional[Callable[[T], int]] = None,
) -> List[List[T]]:
    """
    Split items into batches capped by count and, optionally, total weight.

    A single item heavier than ``max_weight`` still gets its own batch.
    """
    if max_items < 1:
        raise ValueError("max_items must be at least 1")

    batches: List[List[T]] = []
    current: List[T] = []
    current_weight = 0

    for item in items:
        weight = weigh(item) if weigh is not None else 0
        over_count = len(current) >= max_items
        over_weight = max_weight is not None and current_weight + weight > max_weight
        if current and (over_count or over_weight):
            batches.append(current)
            current, current_weight = [], 0
        current.append(item)
        current_weight += weight

    if current:
        batches.append(current)
    return batches


async def process_in_batches(
    items: List[T],
    batch_fn: Callable[[List[T]], Awaitable[List[R]]],
    batch_size: int = 100,
    delay: float = 0.0,
    max_weight: Optional[int] = None,
    weigh: Optional[Callable[[T], int]] = None,
    on_progress: Optional[Callable[[int, int], None]] = None,
    desc: Optional[str] = None,
) -> List[R]:
    """
    Process items batch by batch, sleeping ``delay`` seconds between batches.

    Args:
        items: Items to process
        batch_fn: Async function returning one result per item in the batch
        batch_size: Maximum items per batch
        delay: Seconds to wait between batches
        max_weight: Optional cap on summed item weight per batch
        weigh: Weight function (e.g., token count) used with max_weight
        on_progress: Called with (items_done, total) after each batch
        desc: Description for logging progress

    Returns:
        Flattened results in input order
    """
    if not items:
        return []

    batches = make_batches(items, batch_size, max_weight, weigh)
    results: List[R] = []
    total = len(items)

    for i, batch in enumerate(batches):
        if i > 0 and delay > 0:
            await asyncio.sleep(delay)

        batch_results = await batch_fn(batch)
        if len(batch_results) != len(batch):
            raise ValueError(
                f"Batch function returned {len(batch_results)} results for {len(batch)} items"
            )
        results.extend(batch_results)

        if desc:
            logger.info(f"{desc}: batch {i + 1}/{len(batches)} ({len(results)}/{total})")
        if on_progress:
            on_progress(len(results), total)

    return results
