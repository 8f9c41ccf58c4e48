"""Push-to-pull bridge with backpressure.

A Bridge lets a producer running under its own control flow (an event
callback, a writer API, another task) feed a pull-based Sequence consumer.
It is a bounded buffer with exactly one writer role and one reader role.

Key Features:
    - write() suspends while the buffer is full, resuming as the reader pulls
    - close()/close(error) ends the stream after buffered items are drained
    - Reader cancellation (aclose) fails suspended and future writes with
      BridgeCancelledError instead of leaving the writer blocked forever

Example:
    >>> bridge: Bridge[str] = Bridge(maxsize=2)
    >>>
    >>> async def producer() -> None:
    ...     for word in ("a", "b", "c"):
    ...         await bridge.write(word)
    ...     await bridge.close()
    >>>
    >>> task = asyncio.create_task(producer())
    >>> [w async for w in bridge]
    ['a', 'b', 'c']
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import AsyncIterator, Awaitable
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from procflow.foundation.config import get_settings
from procflow.foundation.errors import BridgeCancelledError, BridgeClosedError

if TYPE_CHECKING:
    from .sequence import Sequence

T = TypeVar("T")

__all__ = ["Bridge", "produce"]


class Bridge(Generic[T]):
    """Bounded single-writer/single-reader queue adapting push to pull.

    Args:
        maxsize: Buffer slots before write() suspends (default from settings)
        on_close: Optional callback (sync or async) run once when the reader
            releases the bridge

    Attributes:
        closed: No further writes are accepted
        cancelled: The reader released the bridge before end of stream
    """

    __slots__ = ("_maxsize", "_items", "_cond", "_closed", "_cancelled", "_released", "_error", "_on_close")

    def __init__(
        self,
        maxsize: int | None = None,
        *,
        on_close: Callable[[], object] | None = None,
    ) -> None:
        if maxsize is None:
            maxsize = get_settings().concurrency.bridge_maxsize
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1; got {maxsize}")
        self._maxsize = maxsize
        self._items: deque[T] = deque()
        self._cond = asyncio.Condition()
        self._closed = False
        self._cancelled = False
        self._released = False
        self._error: BaseException | None = None
        self._on_close = on_close

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def size(self) -> int:
        """Number of buffered items."""
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    # ─────────────────────────────────────────────────────────────────────────
    # Writer side
    # ─────────────────────────────────────────────────────────────────────────

    async def write(self, item: T) -> None:
        """Write an item, suspending while the buffer is full.

        Raises:
            BridgeCancelledError: The reader stopped consuming
            BridgeClosedError: The writer already closed the bridge
        """
        async with self._cond:
            while True:
                if self._cancelled:
                    raise BridgeCancelledError("reader cancelled the bridge")
                if self._closed:
                    raise BridgeClosedError("bridge is already closed")
                if len(self._items) < self._maxsize:
                    break
                await self._cond.wait()
            self._items.append(item)
            self._cond.notify_all()

    async def close(self, error: BaseException | None = None) -> None:
        """Close the writer side.

        Safe to call multiple times; the error (or no error) passed on the
        first call is honored. Buffered items are still delivered first.
        """
        async with self._cond:
            if self._closed:
                return
            self._closed = True
            self._error = error
            self._cond.notify_all()

    # ─────────────────────────────────────────────────────────────────────────
    # Reader side
    # ─────────────────────────────────────────────────────────────────────────

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        async with self._cond:
            while not self._items and not self._closed:
                await self._cond.wait()
            if self._items:
                item = self._items.popleft()
                self._cond.notify_all()
                return item
            if self._error is not None and not self._cancelled:
                raise self._error
            raise StopAsyncIteration

    async def aclose(self) -> None:
        """Release the reader side.

        Before end of stream this is a cancellation: the buffer is dropped and
        any suspended writer is woken with BridgeCancelledError.
        """
        async with self._cond:
            if self._released:
                return
            self._released = True
            if not self._closed or self._items:
                self._cancelled = True
            self._closed = True
            self._items.clear()
            self._cond.notify_all()
        if self._on_close is not None:
            result = self._on_close()
            if inspect.isawaitable(result):
                await result

    def sequence(self) -> Sequence[T]:
        """Wrap the reader side as a Sequence."""
        from .sequence import Sequence
        return Sequence(self)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "closed" if self._closed else "open"
        return f"Bridge(maxsize={self._maxsize}, size={len(self._items)}, {state})"


def produce(
    producer: Callable[[Bridge[T]], Awaitable[None]],
    *,
    maxsize: int | None = None,
) -> Sequence[T]:
    """Turn a push-style producer coroutine into a Sequence.

    The producer is started as a task on the first pull and receives the
    bridge to write into. Returning closes the bridge; raising closes it with
    that error. Closing the sequence cancels the producer and awaits it.

    Example:
        >>> async def ticks(bridge: Bridge[int]) -> None:
        ...     for i in itertools.count():
        ...         await bridge.write(i)
        >>>
        >>> await produce(ticks).take(3).collect()
        [0, 1, 2]
    """
    from .sequence import Sequence
    return Sequence(_produced(producer, maxsize))


async def _produced(
    producer: Callable[[Bridge[T]], Awaitable[None]],
    maxsize: int | None,
) -> AsyncIterator[T]:
    bridge: Bridge[T] = Bridge(maxsize)

    async def run() -> None:
        try:
            await producer(bridge)
        except BridgeCancelledError:
            return  # Reader went away
        except Exception as e:
            await bridge.close(e)
            return
        await bridge.close()

    task = asyncio.create_task(run())
    try:
        async for item in bridge:
            yield item
    finally:
        await bridge.aclose()
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)
