"""
Batch Processor

Runs a per-item async worker over an ordered list in fixed-size batches:
- every item of a batch runs concurrently (asyncio.gather)
- a batch finishes completely before the next one starts
- a cooldown pause separates consecutive batches (not after the last)

The cooldown only relieves pressure on the GitHub API and the database
between batches. It is not a rate limiter; wrap the worker if one is needed.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_BATCH_SIZE = 50
DEFAULT_COOLDOWN_SECONDS = 0.1


def iter_batches(items: Sequence[T], batch_size: int) -> List[Sequence[T]]:
    """Split items into consecutive slices of at most batch_size."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    return [items[i:i + batch_size] for i in range(0, len(items), batch_size)]


async def process_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int = DEFAULT_BATCH_SIZE,
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    on_batch_complete: Optional[Callable[[int, List[Any]], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_error: Optional[Callable[[T, BaseException], R]] = None,
) -> List[Any]:
    """
    Process items batch by batch and return every result in input order.

    A raising worker never aborts its batch or the run: the exception is
    logged and its slot holds on_error(item, exc), or the exception object
    itself when no on_error is given.

    Args:
        items: Ordered items to process
        worker: Async callable producing one result per item
        batch_size: Items per batch
        cooldown_seconds: Pause between consecutive batches
        on_batch_complete: Optional callback(batch_index, batch_results)
        sleep: Awaitable used for the cooldown (injectable for tests)
        on_error: Optional callback turning a worker failure into a result

    Returns:
        Concatenated results, same length and order as items
    """
    batches = iter_batches(items, batch_size)
    results: List[Any] = []

    for batch_index, batch in enumerate(batches):
        batch_results = list(await asyncio.gather(
            *(worker(item) for item in batch),
            return_exceptions=True
        ))

        for offset, outcome in enumerate(batch_results):
            if isinstance(outcome, BaseException):
                item_index = batch_index * batch_size + offset
                logger.error(
                    f"Batch {batch_index + 1}/{len(batches)}: worker raised for item {item_index}: {outcome}"
                )
                if on_error is not None:
                    batch_results[offset] = on_error(batch[offset], outcome)

        results.extend(batch_results)
        logger.debug(f"Batch {batch_index + 1}/{len(batches)} done ({len(batch)} items)")

        if on_batch_complete is not None:
            on_batch_complete(batch_index, list(batch_results))

        if batch_index < len(batches) - 1 and cooldown_seconds > 0:
            await sleep(cooldown_seconds)

    return results
