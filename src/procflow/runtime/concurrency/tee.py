"""Fan one async stream out into independent branches.

The hub is the sole consumer of its upstream. Whichever branch runs out of
buffered items first pulls the next item and appends it to every open
branch, so each branch sees the full stream in order at its own pace. A
branch that lags holds the items it has not read yet; buffers are not
bounded.

An upstream failure is delivered to each branch after the items buffered
before it. The upstream is released once every branch is closed or has
reached its end.

Example:
    >>> left, right = tee_stream(source, 2)
    >>> total, items = await asyncio.gather(count(left), collect(right))
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

from .stream import aclose

T = TypeVar("T")

__all__ = ["StreamTee", "TeeBranch", "tee_stream"]


class TeeBranch(Generic[T]):
    """One reader of a :class:`StreamTee`."""

    __slots__ = ("_hub", "_buffer", "_detached")

    def __init__(self, hub: StreamTee[T]) -> None:
        self._hub = hub
        self._buffer: deque[T] = deque()
        self._detached = False

    def __aiter__(self) -> TeeBranch[T]:
        return self

    async def __anext__(self) -> T:
        while not self._buffer:
            if self._detached:
                raise StopAsyncIteration
            if self._hub.ended:
                if self._hub.error is not None:
                    raise self._hub.error
                raise StopAsyncIteration
            await self._hub.pull(self)
        return self._buffer.popleft()

    async def aclose(self) -> None:
        """Stop reading; the last branch to close releases the upstream."""
        if self._detached:
            return
        self._detached = True
        self._buffer.clear()
        await self._hub.detach()

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def push(self, item: T) -> None:
        self._buffer.append(item)


class StreamTee(Generic[T]):
    """Shared upstream with per-branch buffers.

    Args:
        stream: Upstream to own
        n: Number of branches
    """

    __slots__ = ("_source", "_branches", "_lock", "_ended", "_error", "_released")

    def __init__(self, stream: AsyncIterator[T], n: int) -> None:
        if n < 1:
            raise ValueError(f"tee needs at least one branch; got {n}")
        self._source = stream
        self._branches = tuple(TeeBranch(self) for _ in range(n))
        self._lock = asyncio.Lock()
        self._ended = False
        self._error: Exception | None = None
        self._released = False

    @property
    def branches(self) -> tuple[TeeBranch[T], ...]:
        return self._branches

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def error(self) -> Exception | None:
        return self._error

    async def pull(self, reader: TeeBranch[T]) -> None:
        """Fetch one upstream item into every open branch.

        Does nothing if another branch already filled ``reader`` while it
        waited for the lock.
        """
        async with self._lock:
            if self._ended or reader.detached or reader.buffered:
                return
            try:
                item = await anext(self._source)
            except StopAsyncIteration:
                self._ended = True
                return
            except Exception as e:
                self._ended = True
                self._error = e
                return
            for branch in self._branches:
                if not branch.detached:
                    branch.push(item)

    async def detach(self) -> None:
        if self._released or not all(b.detached for b in self._branches):
            return
        self._released = True
        await aclose(self._source)


def tee_stream(stream: AsyncIterator[T], n: int = 2) -> tuple[TeeBranch[T], ...]:
    """Split ``stream`` into ``n`` branches that each yield every item."""
    return StreamTee(stream, n).branches
