import asyncio
from typing import Awaitable
from typing import Callable
from typing import Iterable
from typing import Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


async def map_limit(items: Iterable[T], limit: int, fn: Callable[[T], Awaitable[R]]) -> list[R]:
    """Like `asyncio.gather(*map(fn, items))` with at most `limit` calls in flight.

    Results keep the order of `items`. The first failure cancels the calls
    still running or waiting and is re-raised once they have finished.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    semaphore = asyncio.Semaphore(limit)

    async def run(item: T) -> R:
        async with semaphore:
            return await fn(item)

    tasks = [asyncio.ensure_future(run(item)) for item in items]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
