"""Bounded-concurrency runner shared by the series and movie detail syncs."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Tuple

from catalog_sync.core.errors import CatalogError
from catalog_sync.utils import chunked

logger = logging.getLogger(__name__)


async def run_bounded(
    ids: Iterable[int],
    worker: Callable[[int], Awaitable[Any]],
    *,
    max_concurrency: int,
    timeout: float,
    chunk_size: int,
    label: str,
) -> List[Tuple[int, Any]]:
    """Run ``worker`` for every id, at most ``max_concurrency`` at a time.

    Each call gets its own timeout. Returns ``(id, outcome)`` pairs in input
    order; a failed call's outcome is its exception, and failures never abort
    the run.
    """
    semaphore = asyncio.Semaphore(max_concurrency)

    async def run_one(item_id: int):
        async with semaphore:
            return await asyncio.wait_for(worker(item_id), timeout=timeout)

    outcomes: List[Tuple[int, Any]] = []
    for chunk in chunked(list(ids), chunk_size):
        results = await asyncio.gather(*(run_one(item_id) for item_id in chunk), return_exceptions=True)
        for item_id, result in zip(chunk, results):
            if isinstance(result, asyncio.TimeoutError):
                logger.warning(f"{label} {item_id} details timed out after {timeout}s")
            elif isinstance(result, CatalogError):
                logger.warning(f"{label} {item_id} details failed: {result}")
            elif isinstance(result, BaseException):
                logger.error(f"{label} {item_id} details crashed: {result!r}")
            outcomes.append((item_id, result))
    return outcomes
