"""Ordered fan-out over a shared, fixed-size thread pool."""

from concurrent.futures import Executor
from typing import Callable, Iterable, Iterator, Optional, TypeVar


T = TypeVar("T")
R = TypeVar("R")


def map_ordered(executor: Optional[Executor], func: Callable[[T], R],
                items: Iterable[T]) -> Iterator[R]:
    """Yield ``func(item)`` for every item, in the order the items were given.

    Work is submitted to ``executor``. A task that no pool thread has picked
    up yet is taken back and run on the calling thread, so a caller never
    waits on a task that is only queued. Nested fan-out from inside pool
    threads therefore cannot exhaust the pool. Without an executor every
    item runs inline.

    Closing the iterator early cancels the tasks that have not started.
    """
    items = list(items)
    if executor is None:
        for item in items:
            yield func(item)
        return

    futures = [executor.submit(func, item) for item in items]
    try:
        for item, future in zip(items, futures):
            if future.cancel():
                yield func(item)
            else:
                yield future.result()
    finally:
        for future in futures:
            future.cancel()
