"""Tests for Sequence combinators, terminal consumers and cleanup."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from procflow import EmptySequenceError, Sequence, StageError, clear_settings_cache, iterate, range_sequence


class Tracked:
    """Async source recording how far it was pulled and whether it was closed."""

    def __init__(self, items: list[object], fail_at: int | None = None) -> None:
        self.items = items
        self.fail_at = fail_at
        self.pulled = 0
        self.closed = 0

    async def gen(self) -> AsyncIterator[object]:
        try:
            for i, item in enumerate(self.items):
                if self.fail_at is not None and i == self.fail_at:
                    raise ValueError(f"boom at {i}")
                self.pulled += 1
                yield item
        finally:
            self.closed += 1


# ─────────────────────────────────────────────────────────────────────────────
# Construction
# ─────────────────────────────────────────────────────────────────────────────


class TestFactories:
    @pytest.mark.asyncio
    async def test_iterate_sync_iterable(self) -> None:
        assert await iterate([1, 2, 3]).collect() == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_iterate_none_is_empty(self) -> None:
        assert await iterate().collect() == []

    @pytest.mark.asyncio
    async def test_iterate_returns_existing_sequence(self) -> None:
        seq = iterate([1])
        assert iterate(seq) is seq

    @pytest.mark.asyncio
    async def test_of(self) -> None:
        assert await Sequence.of("a", "b").collect() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_range_sequence(self) -> None:
        assert await range_sequence(3).collect() == [0, 1, 2]
        assert await range_sequence(1, 7, 2).collect() == [1, 3, 5]

    @pytest.mark.asyncio
    async def test_nothing_pulled_before_consumer(self) -> None:
        src = Tracked([1, 2, 3])
        seq = iterate(src.gen()).map(lambda x: x * 2)
        await asyncio.sleep(0)
        assert src.pulled == 0
        assert await seq.collect() == [2, 4, 6]


# ─────────────────────────────────────────────────────────────────────────────
# Combinators
# ─────────────────────────────────────────────────────────────────────────────


class TestCombinators:
    @pytest.mark.asyncio
    async def test_map_sync_and_async(self) -> None:
        async def triple(x: int) -> int:
            return x * 3

        assert await range_sequence(3).map(lambda x: x + 1).map(triple).collect() == [3, 6, 9]

    @pytest.mark.asyncio
    async def test_filter_and_filter_not(self) -> None:
        assert await range_sequence(6).filter(lambda x: x % 2 == 0).collect() == [0, 2, 4]
        assert await range_sequence(6).filter_not(lambda x: x % 2 == 0).collect() == [1, 3, 5]

    @pytest.mark.asyncio
    async def test_flatten_mixed_iterables(self) -> None:
        async def inner() -> AsyncIterator[int]:
            yield 3
            yield 4

        assert await iterate([[1, 2], inner(), ()]).flatten().collect() == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_flat_map(self) -> None:
        assert await iterate(["ab", "cd"]).flat_map(list).collect() == ["a", "b", "c", "d"]

    @pytest.mark.asyncio
    async def test_flatten_rejects_strings(self) -> None:
        with pytest.raises(TypeError):
            await iterate(["abc"]).flatten().collect()

    @pytest.mark.asyncio
    async def test_drop(self) -> None:
        assert await range_sequence(5).drop(3).collect() == [3, 4]
        assert await range_sequence(2).drop(5).collect() == []

    @pytest.mark.asyncio
    async def test_concat_is_sequential(self) -> None:
        second = Tracked(["c"])
        seq = iterate(["a", "b"]).concat(second.gen(), ["d"])
        assert await seq.__anext__() == "a"
        assert second.pulled == 0
        assert [x async for x in seq] == ["b", "c", "d"]
        assert second.closed == 1

    @pytest.mark.asyncio
    async def test_enumerate(self) -> None:
        assert await iterate("xy").enumerate(1).collect() == [(1, "x"), (2, "y")]

    @pytest.mark.asyncio
    async def test_chunked(self) -> None:
        assert await range_sequence(5).chunked(2).collect() == [[0, 1], [2, 3], [4]]
        with pytest.raises(ValueError):
            range_sequence(5).chunked(0)

    @pytest.mark.asyncio
    async def test_transform(self) -> None:
        async def pairs(items: AsyncIterator[int]) -> AsyncIterator[int]:
            async for x in items:
                yield x
                yield x

        assert await range_sequence(2).transform(pairs).collect() == [0, 0, 1, 1]


# ─────────────────────────────────────────────────────────────────────────────
# Take and early release
# ─────────────────────────────────────────────────────────────────────────────


class TestTake:
    @pytest.mark.asyncio
    async def test_take_releases_upstream_once(self) -> None:
        src = Tracked(list(range(100)))
        assert await iterate(src.gen()).take(3).collect() == [0, 1, 2]
        assert src.pulled == 3
        assert src.closed == 1

    @pytest.mark.asyncio
    async def test_take_releases_before_nth_item_is_handed_on(self) -> None:
        src = Tracked(list(range(10)))
        seq = iterate(src.gen()).take(2)
        assert await seq.__anext__() == 0
        assert src.closed == 0
        assert await seq.__anext__() == 1
        assert src.closed == 1

    @pytest.mark.asyncio
    async def test_take_zero(self) -> None:
        src = Tracked([1, 2])
        assert await iterate(src.gen()).take(0).collect() == []
        assert src.pulled == 0

    @pytest.mark.asyncio
    async def test_take_more_than_available(self) -> None:
        assert await range_sequence(2).take(10).collect() == [0, 1]

    @pytest.mark.asyncio
    async def test_break_with_context_manager_releases(self) -> None:
        src = Tracked(list(range(10)))
        async with iterate(src.gen()).map(str) as seq:
            async for item in seq:
                if item == "1":
                    break
        assert src.closed == 1

    @pytest.mark.asyncio
    async def test_first_releases_rest(self) -> None:
        src = Tracked(["a", "b", "c"])
        assert await iterate(src.gen()).first() == "a"
        assert src.pulled == 1
        assert src.closed == 1

    @pytest.mark.asyncio
    async def test_first_of_empty_raises(self) -> None:
        with pytest.raises(EmptySequenceError):
            await iterate([]).first()

    @pytest.mark.asyncio
    async def test_empty_sequence_error_is_lookup_error(self) -> None:
        with pytest.raises(LookupError):
            await iterate([]).filter(bool).first()


# ─────────────────────────────────────────────────────────────────────────────
# Terminal state
# ─────────────────────────────────────────────────────────────────────────────


class TestTerminalState:
    @pytest.mark.asyncio
    async def test_end_repeats(self) -> None:
        seq = iterate([1])
        assert await seq.collect() == [1]
        with pytest.raises(StopAsyncIteration):
            await seq.__anext__()
        with pytest.raises(StopAsyncIteration):
            await seq.__anext__()

    @pytest.mark.asyncio
    async def test_failure_repeats_and_releases(self) -> None:
        src = Tracked([1, 2, 3], fail_at=1)
        seq = iterate(src.gen())
        assert await seq.__anext__() == 1
        with pytest.raises(ValueError, match="boom at 1") as first:
            await seq.__anext__()
        with pytest.raises(ValueError) as second:
            await seq.__anext__()
        assert first.value is second.value
        assert src.closed == 1

    @pytest.mark.asyncio
    async def test_failure_propagates_through_chain(self) -> None:
        src = Tracked(list(range(5)), fail_at=2)
        with pytest.raises(ValueError):
            await iterate(src.gen()).map(lambda x: x).filter(lambda x: True).collect()
        assert src.closed == 1

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self) -> None:
        src = Tracked([1, 2])
        seq = iterate(src.gen())
        await seq.__anext__()
        await seq.aclose()
        await seq.aclose()
        assert seq.closed
        assert src.closed == 1
        with pytest.raises(StopAsyncIteration):
            await seq.__anext__()

    @pytest.mark.asyncio
    async def test_map_error_releases_upstream(self) -> None:
        src = Tracked(list(range(10)))

        def explode(x: int) -> int:
            if x == 3:
                raise KeyError(x)
            return x

        with pytest.raises(KeyError):
            await iterate(src.gen()).map(explode).collect()
        assert src.pulled == 4
        assert src.closed == 1

    @pytest.mark.asyncio
    async def test_chained_stage_errors(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROCFLOW_ERRORS_CHAIN", "true")
        clear_settings_cache()

        with pytest.raises(StageError, match="map stage failed") as exc:
            await iterate([1]).map(lambda x: 1 / 0).collect()
        assert isinstance(exc.value.__cause__, ZeroDivisionError)
        assert exc.value.stage == "map"


# ─────────────────────────────────────────────────────────────────────────────
# Terminal consumers
# ─────────────────────────────────────────────────────────────────────────────


class TestConsumers:
    @pytest.mark.asyncio
    async def test_reduce(self) -> None:
        assert await range_sequence(5).reduce(0, lambda acc, x: acc + x) == 10

    @pytest.mark.asyncio
    async def test_reduce_async(self) -> None:
        async def join(acc: str, x: int) -> str:
            return acc + str(x)

        assert await range_sequence(3).reduce("", join) == "012"

    @pytest.mark.asyncio
    async def test_for_each(self) -> None:
        seen: list[int] = []
        await range_sequence(3).for_each(seen.append)
        assert seen == [0, 1, 2]
