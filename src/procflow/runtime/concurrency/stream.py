"""Async stream combinators with owned-upstream cleanup.

Each combinator is an async generator that is the sole consumer of its
upstream. Whatever way the generator ends (exhaustion, failure, or being
closed by its consumer), its ``finally`` block closes the upstream before
the generator returns, so releasing the outermost stage releases the whole
chain down to the originating resource.

Key Operations:
    - map_stream / filter_stream: per-item functions, sync or async
    - take_stream / skip_stream: structural slicing
    - chain_streams / flatten_stream: strictly sequential concatenation
    - batch_stream / enumerate_stream: grouping and indexing
    - transform_stream: opaque chunk transforms

Example:
    >>> async for line in take_stream(map_stream(source, str.upper), 3):
    ...     print(line)
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Iterable
from typing import Callable, TypeVar

from procflow.foundation.config import get_settings
from procflow.foundation.errors import StageError

T = TypeVar("T")
U = TypeVar("U")

__all__ = [
    "aclose",
    "invoke",
    "map_stream",
    "filter_stream",
    "take_stream",
    "skip_stream",
    "chain_streams",
    "flatten_stream",
    "batch_stream",
    "enumerate_stream",
    "transform_stream",
]


async def aclose(obj: object) -> None:
    """Close an async iterator if it supports closing."""
    close = getattr(obj, "aclose", None)
    if close is not None:
        await close()


async def invoke(func: Callable[..., U | Awaitable[U]], *args: object, stage: str) -> U:
    """Apply a user function, awaiting the result when it is awaitable.

    With error chaining enabled, failures are re-raised as StageError.
    """
    try:
        result = func(*args)
        if inspect.isawaitable(result):
            result = await result
        return result  # type: ignore[return-value]
    except Exception as e:
        if get_settings().errors.chain:
            raise StageError(stage, e) from e
        raise


async def map_stream(
    stream: AsyncIterator[T],
    func: Callable[[T], U] | Callable[[T], Awaitable[U]],
) -> AsyncIterator[U]:
    """Map function over stream items."""
    try:
        async for item in stream:
            yield await invoke(func, item, stage="map")
    finally:
        await aclose(stream)


async def filter_stream(
    stream: AsyncIterator[T],
    predicate: Callable[[T], bool] | Callable[[T], Awaitable[bool]],
    *,
    keep: bool = True,
) -> AsyncIterator[T]:
    """Filter stream items by predicate (``keep=False`` inverts the test)."""
    try:
        async for item in stream:
            if bool(await invoke(predicate, item, stage="filter")) is keep:
                yield item
    finally:
        await aclose(stream)


async def take_stream(stream: AsyncIterator[T], n: int) -> AsyncIterator[T]:
    """Take first n items from stream.

    The upstream is closed as soon as the n-th item has been pulled, before
    that item is handed downstream.
    """
    try:
        if n <= 0:
            return
        count = 0
        async for item in stream:
            count += 1
            if count >= n:
                await aclose(stream)
                yield item
                return
            yield item
    finally:
        await aclose(stream)


async def skip_stream(stream: AsyncIterator[T], n: int) -> AsyncIterator[T]:
    """Skip first n items from stream."""
    try:
        count = 0
        async for item in stream:
            if count >= n:
                yield item
            count += 1
    finally:
        await aclose(stream)


async def chain_streams(*streams: AsyncIterator[T]) -> AsyncIterator[T]:
    """Chain multiple streams sequentially.

    A stream is not pulled until every stream before it is exhausted. All
    streams are owned: closing the chain closes the ones not yet reached too.
    """
    try:
        for stream in streams:
            async for item in stream:
                yield item
            await aclose(stream)
    finally:
        for stream in streams:
            await aclose(stream)


async def flatten_stream(
    stream: AsyncIterator[AsyncIterable[T] | Iterable[T]],
) -> AsyncIterator[T]:
    """Flatten nested iterables one level, in order."""
    try:
        async for inner in stream:
            if isinstance(inner, (str, bytes, bytearray)):
                raise TypeError(f"cannot flatten {type(inner).__name__} items")
            if isinstance(inner, AsyncIterable):
                iterator = aiter(inner)
                try:
                    async for item in iterator:
                        yield item
                finally:
                    await aclose(iterator)
            else:
                for item in inner:
                    yield item
    finally:
        await aclose(stream)


async def batch_stream(stream: AsyncIterator[T], size: int) -> AsyncIterator[list[T]]:
    """Group stream items into lists of at most ``size`` items."""
    batch: list[T] = []
    try:
        if size < 1:
            raise ValueError(f"batch size must be >= 1; got {size}")
        async for item in stream:
            batch.append(item)
            if len(batch) >= size:
                yield batch
                batch = []
        if batch:
            yield batch
    finally:
        await aclose(stream)


async def enumerate_stream(
    stream: AsyncIterator[T],
    start: int = 0,
) -> AsyncIterator[tuple[int, T]]:
    """Add index to stream items."""
    idx = start
    try:
        async for item in stream:
            yield (idx, item)
            idx += 1
    finally:
        await aclose(stream)


async def transform_stream(
    stream: AsyncIterator[T],
    stage: Callable[[AsyncIterator[T]], AsyncIterable[U]],
) -> AsyncIterator[U]:
    """Run an opaque chunk transform, closing both its output and its input."""
    out = aiter(stage(stream))
    try:
        async for item in out:
            yield item
    finally:
        await aclose(out)
        await aclose(stream)
