"""
Bounded fan-out shared by the plan builder and the executors.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar

from .errors import ErrorKind, HarbormasterError

T = TypeVar("T")
R = TypeVar("R")


def check_cancelled(cancel: asyncio.Event | None, op: str) -> None:
    """Raise a cancelled error if ``cancel`` has been set."""
    if cancel is not None and cancel.is_set():
        raise HarbormasterError(op, ErrorKind.CANCELLED, "operation cancelled")


async def fan_out(
    items: Iterable[T],
    func: Callable[[T], Awaitable[R]],
    *,
    parallel: bool,
    limit: asyncio.Semaphore | None = None,
) -> list[R | Exception]:
    """Run ``func`` over ``items`` and collect results or exceptions in order.

    Args:
        items: Work items
        func: Coroutine function applied to each item
        parallel: Run concurrently when True, one at a time otherwise
        limit: Optional semaphore bounding concurrent calls

    Returns:
        One entry per item: the result, or the Exception it raised.
        Cancellation of the surrounding task is never swallowed.
    """
    items = list(items)

    async def _guarded(item: T) -> R | Exception:
        try:
            if limit is None:
                return await func(item)
            async with limit:
                return await func(item)
        except Exception as e:
            return e

    if not parallel:
        return [await _guarded(item) for item in items]
    return list(await asyncio.gather(*(_guarded(item) for item in items)))


def split_results(results: list[R | Exception]) -> tuple[list[R], list[Exception]]:
    """Separate successful results from raised exceptions."""
    ok: list[R] = []
    failed: list[Exception] = []
    for result in results:
        if isinstance(result, Exception):
            failed.append(result)
        else:
            ok.append(result)
    return ok, failed
