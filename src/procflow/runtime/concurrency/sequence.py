"""Lazy, chainable async sequences with deterministic cleanup.

A Sequence wraps exactly one upstream async source and is its only consumer.
Nothing is produced until the consumer pulls. On the first terminal
transition (end, failure, or explicit close) the upstream is released
exactly once, and the terminal result repeats on every later pull.

Key Features:
    - Lazy combinators: map, filter, take, drop, concat, flatten, transform
    - tee: independent clones over one shared upstream
    - Ordered and unordered concurrent maps with a bounded window
    - Terminal consumers that always release upstream: collect, reduce, first
    - Process piping: feed a sequence into a child process's stdin

Example:
    >>> squares = await iterate(range(10)).map(lambda x: x * x).take(3).collect()
    >>> squares
    [0, 1, 4]

    >>> # Early exit without a terminal consumer: close explicitly
    >>> async with iterate(source) as seq:
    ...     async for item in seq:
    ...         if done(item):
    ...             break
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Iterable
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from procflow.foundation.errors import BridgeCancelledError, BridgeClosedError, EmptySequenceError
from procflow.io.streaming import chunked_lines, decode_text, gunzip, lines

from .ordered import ordered_map, resolve_window, unordered_map
from .stream import (
    aclose,
    batch_stream,
    chain_streams,
    enumerate_stream,
    filter_stream,
    flatten_stream,
    invoke,
    map_stream,
    skip_stream,
    take_stream,
    transform_stream,
)
from .tee import tee_stream

if TYPE_CHECKING:
    from types import TracebackType

    from procflow.runtime.process import ProcessSequence

    from .bridge import Bridge

T = TypeVar("T")
U = TypeVar("U")

__all__ = ["Sequence", "ByteSequence", "iterate", "range_sequence"]


class Sequence(Generic[T]):
    """Single-pass lazy async sequence over one owned upstream.

    Use the factory :func:`iterate` rather than constructing directly; it
    avoids stacking wrappers around an existing Sequence.

    Args:
        source: Async iterator or async iterable to wrap
    """

    __slots__ = ("_source", "_done", "_error", "_closed")

    def __init__(self, source: AsyncIterable[T]) -> None:
        self._source: AsyncIterator[T] = source if isinstance(source, AsyncIterator) else aiter(source)
        self._done = False
        self._error: BaseException | None = None
        self._closed = False

    @classmethod
    def of(cls, *items: T) -> Sequence[T]:
        """Sequence over the given items."""
        return cls(_from_iterable(items))

    # ─────────────────────────────────────────────────────────────────────────
    # Pull protocol
    # ─────────────────────────────────────────────────────────────────────────

    def __aiter__(self) -> Sequence[T]:
        return self

    async def __anext__(self) -> T:
        if self._error is not None:
            raise self._error
        if self._done:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            self._done = True
            await self.aclose()
            raise
        except asyncio.CancelledError:
            self._done = True
            await self.aclose()
            raise
        except BaseException as e:
            self._done = True
            self._error = e
            await self.aclose()
            raise

    async def aclose(self) -> None:
        """Release the upstream. Idempotent; later pulls report end of sequence."""
        if self._closed:
            return
        self._closed = True
        self._done = True
        await aclose(self._source)

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> Sequence[T]:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        state = "failed" if self._error else "done" if self._done else "open"
        return f"{type(self).__name__}({state})"

    # ─────────────────────────────────────────────────────────────────────────
    # Lazy combinators
    # ─────────────────────────────────────────────────────────────────────────

    def map(self, func: Callable[[T], U] | Callable[[T], Awaitable[U]]) -> Sequence[U]:
        """Map each item (1:1). ``func`` may be sync or async."""
        return Sequence(map_stream(self, func))

    def filter(self, predicate: Callable[[T], bool] | Callable[[T], Awaitable[bool]]) -> Sequence[T]:
        """Keep the items that pass a test."""
        return Sequence(filter_stream(self, predicate))

    def filter_not(self, predicate: Callable[[T], bool] | Callable[[T], Awaitable[bool]]) -> Sequence[T]:
        """Drop the items that pass a test (inverse of :meth:`filter`)."""
        return Sequence(filter_stream(self, predicate, keep=False))

    def flatten(self) -> Sequence[object]:
        """Flatten one level of nested (async) iterables, in order."""
        return Sequence(flatten_stream(self))  # type: ignore[arg-type]

    def flat_map(self, func: Callable[[T], object]) -> Sequence[object]:
        """Equivalent to ``map(func).flatten()``."""
        return self.map(func).flatten()

    def take(self, n: int = 1) -> Sequence[T]:
        """First ``n`` items; upstream is released once the n-th is pulled."""
        return Sequence(take_stream(self, n))

    def drop(self, n: int = 1) -> Sequence[T]:
        """Everything after the first ``n`` items."""
        return Sequence(skip_stream(self, n))

    def concat(self, *others: AsyncIterable[T] | Iterable[T]) -> Sequence[T]:
        """Append other sources; each is untouched until the previous ends."""
        return Sequence(chain_streams(self, *(iterate(o) for o in others)))

    def enumerate(self, start: int = 0) -> Sequence[tuple[int, T]]:
        """Pair each item with its index."""
        return Sequence(enumerate_stream(self, start))

    def chunked(self, size: int) -> Sequence[list[T]]:
        """Group items into lists of at most ``size``."""
        if size < 1:
            raise ValueError(f"chunk size must be >= 1; got {size}")
        return Sequence(batch_stream(self, size))

    def transform(self, stage: Callable[[AsyncIterator[T]], AsyncIterable[U]]) -> Sequence[U]:
        """Apply an opaque stream transform (line splitting, decompression, ...)."""
        return Sequence(transform_stream(self, stage))

    def tee(self, n: int = 2) -> tuple[Sequence[T], ...]:
        """Split into ``n`` sequences that each yield every item, in order.

        Clones are consumed independently; items a slower clone has not read
        yet are buffered. The upstream is released once every clone is closed
        or exhausted.
        """
        wrap = ByteSequence if isinstance(self, ByteSequence) else Sequence
        return tuple(wrap(branch) for branch in tee_stream(self, n))

    def concurrent_map(
        self,
        func: Callable[[T], Awaitable[U]],
        concurrency: float | None = None,
    ) -> Sequence[U]:
        """Map with up to ``concurrency`` transforms in flight; order preserved."""
        return Sequence(ordered_map(self, func, resolve_window(concurrency)))

    def concurrent_unordered_map(
        self,
        func: Callable[[T], Awaitable[U]],
        concurrency: float | None = None,
    ) -> Sequence[U]:
        """Map with up to ``concurrency`` transforms in flight; completion order."""
        return Sequence(unordered_map(self, func, resolve_window(concurrency)))

    async def pipe(self, command: str, *args: str, **options: object) -> ProcessSequence:
        """Spawn a process fed from this sequence; return its output.

        Items are written to stdin: ``bytes`` as-is, ``str`` as a UTF-8 line.

        Raises:
            SpawnError: The command could not be started
        """
        from procflow.runtime.process import run
        return await run(command, *args, input=self, **options)

    # ─────────────────────────────────────────────────────────────────────────
    # Terminal consumers
    # ─────────────────────────────────────────────────────────────────────────

    async def collect(self) -> list[T]:
        """Drain into a list."""
        async with self:
            return [item async for item in self]

    async def reduce(self, initial: U, func: Callable[[U, T], U] | Callable[[U, T], Awaitable[U]]) -> U:
        """Fold the sequence into a single value."""
        acc = initial
        async with self:
            async for item in self:
                acc = await invoke(func, acc, item, stage="reduce")
        return acc

    async def for_each(self, func: Callable[[T], object]) -> None:
        """Run ``func`` (sync or async) for each item."""
        async with self:
            async for item in self:
                await invoke(func, item, stage="for_each")

    async def first(self) -> T:
        """Head of the sequence; the rest is released unread.

        Raises:
            EmptySequenceError: The sequence has no items
        """
        async with self:
            async for item in self:
                return item
        raise EmptySequenceError("sequence is empty")

    async def write_to(self, bridge: Bridge[T]) -> None:
        """Drain into a bridge, then close it.

        A failure is forwarded to the bridge's reader with ``close(error)``.
        If the reader cancels, draining stops and upstream is released.
        """
        try:
            async with self:
                async for item in self:
                    await bridge.write(item)
        except BridgeCancelledError:
            return
        except BridgeClosedError:
            raise
        except Exception as e:
            await bridge.close(e)
            return
        await bridge.close()


class ByteSequence(Sequence[bytes]):
    """Sequence of byte chunks with decoding conveniences."""

    __slots__ = ()

    def lines(self, encoding: str = "utf-8") -> Sequence[str]:
        """Split into text lines (``\\n`` or ``\\r\\n``), without terminators."""
        return self.transform(lambda chunks: lines(chunks, encoding))

    def chunked_lines(self, encoding: str = "utf-8") -> Sequence[list[str]]:
        """Split into lists of lines, one list per input chunk."""
        return self.transform(lambda chunks: chunked_lines(chunks, encoding))

    def text(self, encoding: str = "utf-8") -> Sequence[str]:
        """Decode into text chunks without line splitting."""
        return self.transform(decode_text(encoding))

    def gunzip(self) -> ByteSequence:
        """Decompress a gzip stream."""
        return ByteSequence(transform_stream(self, gunzip))


def iterate(source: AsyncIterable[T] | Iterable[T] | None = None) -> Sequence[T]:
    """Sequence factory.

    Args:
        source: An iterable or async iterable; ``None`` is empty. An existing
            Sequence is returned unchanged.
    """
    if source is None:
        return Sequence(_from_iterable(()))
    if isinstance(source, Sequence):
        return source
    if isinstance(source, AsyncIterable):
        return Sequence(source)
    return Sequence(_from_iterable(source))


def range_sequence(start: int, stop: int | None = None, step: int = 1) -> Sequence[int]:
    """Sequence over ``range(start, stop, step)`` (``range(start)`` if no stop)."""
    r = range(start) if stop is None else range(start, stop, step)
    return Sequence(_from_iterable(r))


async def _from_iterable(items: Iterable[T]) -> AsyncIterator[T]:
    try:
        for item in items:
            yield item
    finally:
        close = getattr(items, "close", None)
        if close is not None:
            result = close()
            if inspect.isawaitable(result):
                await result
