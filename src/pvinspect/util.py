"""Utility functions for pv-inspect."""

import asyncio
from collections.abc import Coroutine
from typing import Any

__all__ = ["first_completed"]


async def first_completed[T](*aws: Coroutine[Any, Any, T]) -> T:
    """Run coroutines concurrently and return the result of the first to end.

    Once any of the coroutines returns or raises, all of the others are
    cancelled and awaited before this function returns, so no task outlives
    the call. If this function is itself cancelled, all of the tasks are
    cancelled as well.

    Parameters
    ----------
    *aws
        Coroutines to race.

    Returns
    -------
    T
        Result of the first coroutine to finish. If several finish at the
        same time, the earliest in argument order wins.

    Raises
    ------
    Exception
        Whatever the first coroutine to finish raised.
    """
    if not aws:
        raise ValueError("No coroutines to wait for")
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, _ = await asyncio.wait(
            tasks, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    winner = next(t for t in tasks if t in done)
    return winner.result()
