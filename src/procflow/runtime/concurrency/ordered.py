"""Bounded-concurrency mapping over async streams.

Overlaps I/O-bound work by keeping up to ``window`` transforms in flight as
asyncio tasks while the consumer pulls results.

    - ordered_map: results in input order (head-of-window emission)
    - unordered_map: results in completion order

Example:
    >>> async def fetch(url: str) -> bytes: ...
    >>>
    >>> async for body in ordered_map(urls, fetch, window=8):
    ...     handle(body)  # same order as urls
"""

from __future__ import annotations

import asyncio
import math
from collections import deque
from collections.abc import AsyncIterator, Awaitable
from typing import Callable, TypeVar

from procflow.foundation.config import get_settings
from procflow.runtime.observability import get_logger

from .stream import aclose, invoke

T = TypeVar("T")
U = TypeVar("U")

__all__ = ["ordered_map", "unordered_map", "resolve_window"]

log = get_logger("procflow.concurrency")


def resolve_window(window: float | None) -> int:
    """Validate a concurrency window, defaulting to the configured value.

    Fractional windows round up.
    """
    if window is None:
        return get_settings().concurrency.window
    limit = math.ceil(window)
    if limit < 1:
        raise ValueError(f"concurrency must be greater than 0; got {limit}")
    return limit


async def ordered_map(
    stream: AsyncIterator[T],
    func: Callable[[T], Awaitable[U]] | Callable[[T], U],
    window: float | None = None,
) -> AsyncIterator[U]:
    """Map concurrently, yielding results in input order.

    Keeps a sliding window of at most ``window`` in-flight tasks keyed by
    input position. The oldest position is emitted as soon as it completes;
    results that finish early wait in the window.

    Failure at position p stops admission and cancels everything in flight
    after p. Earlier positions still complete and are emitted, then the
    failure is raised where p would have been emitted. An upstream failure
    is treated the same way, positioned after the last admitted item.

    Closing the generator early cancels all in-flight tasks, awaits them,
    and then closes the upstream.
    """
    limit = resolve_window(window)
    pending: deque[asyncio.Task[U]] = deque()
    discarded: list[asyncio.Task[U]] = []
    exhausted = False
    failed = False
    upstream_error: Exception | None = None

    try:
        while True:
            while not exhausted and not failed and len(pending) < limit:
                try:
                    item = await anext(stream)
                except StopAsyncIteration:
                    exhausted = True
                    break
                except Exception as e:
                    upstream_error = e
                    exhausted = True
                    break
                pending.append(asyncio.ensure_future(invoke(func, item, stage="concurrent_map")))

            if not pending:
                if upstream_error is not None:
                    raise upstream_error
                return

            head = pending[0]
            while not head.done():
                running = [t for t in pending if not t.done()]
                await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                if not failed:
                    failed = _cut_after_failure(pending, discarded)

            pending.popleft()
            yield head.result()
    finally:
        leftovers = [*pending, *discarded]
        for task in leftovers:
            task.cancel()
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)
        await aclose(stream)


def _cut_after_failure(pending: deque[asyncio.Task[U]], discarded: list[asyncio.Task[U]]) -> bool:
    """Cancel and drop every task after the earliest failed one."""
    for idx, task in enumerate(pending):
        if task.done() and not task.cancelled() and task.exception() is not None:
            while len(pending) > idx + 1:
                later = pending.pop()
                later.cancel()
                discarded.append(later)
            log.debug("concurrent map failed", position_in_window=idx, cancelled=len(discarded))
            return True
    return False


async def unordered_map(
    stream: AsyncIterator[T],
    func: Callable[[T], Awaitable[U]] | Callable[[T], U],
    window: float | None = None,
) -> AsyncIterator[U]:
    """Map concurrently, yielding results as they complete.

    Allows maximum concurrency at all times; output order is not the input
    order. The first failure to complete is raised immediately and cancels
    the rest.
    """
    limit = resolve_window(window)
    running: set[asyncio.Task[U]] = set()
    ready: deque[asyncio.Task[U]] = deque()
    exhausted = False
    upstream_error: Exception | None = None

    try:
        while True:
            while not exhausted and len(running) + len(ready) < limit:
                try:
                    item = await anext(stream)
                except StopAsyncIteration:
                    exhausted = True
                    break
                except Exception as e:
                    upstream_error = e
                    exhausted = True
                    break
                running.add(asyncio.ensure_future(invoke(func, item, stage="concurrent_unordered_map")))

            if not ready:
                if not running:
                    if upstream_error is not None:
                        raise upstream_error
                    return
                done, running = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                ready.extend(done)

            yield ready.popleft().result()
    finally:
        leftovers = [*running, *ready]
        for task in leftovers:
            task.cancel()
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)
        await aclose(stream)
