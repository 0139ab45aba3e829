# app/sync/components/pool.py
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")


async def run_bounded(items: Iterable[T], worker: Callable[[T], Awaitable[Any]], limit: int) -> List[Any]:
    """
    Run `worker` over `items` with at most `limit` in flight.
    Results come back in input order; `worker` is expected to turn its own
    failures into values.
    """
    sem = asyncio.Semaphore(max(1, int(limit or 1)))

    async def _one(item: T) -> Any:
        async with sem:
            return await worker(item)

    return list(await asyncio.gather(*(_one(it) for it in items)))
