"""Tests for ordered and unordered concurrent mapping."""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator

import pytest

from procflow import iterate, ordered_map, range_sequence
from procflow.runtime.concurrency import resolve_window


class Gauge:
    """Counts concurrently running transforms."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0
        self.started: list[int] = []
        self.cancelled: list[int] = []

    async def run(self, x: int, delay: float) -> int:
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.started.append(x)
        try:
            await asyncio.sleep(delay)
            return x * 10
        except asyncio.CancelledError:
            self.cancelled.append(x)
            raise
        finally:
            self.active -= 1


class TestOrdering:
    @pytest.mark.asyncio
    async def test_variable_latency_keeps_input_order(self) -> None:
        rng = random.Random(7)
        delays = [rng.uniform(0, 0.02) for _ in range(30)]
        gauge = Gauge()

        result = await range_sequence(30).concurrent_map(lambda x: gauge.run(x, delays[x]), concurrency=5).collect()

        assert result == [x * 10 for x in range(30)]
        assert gauge.peak <= 5
        assert gauge.peak > 1

    @pytest.mark.asyncio
    async def test_window_of_one_is_sequential(self) -> None:
        gauge = Gauge()
        result = await range_sequence(5).concurrent_map(lambda x: gauge.run(x, 0.001), concurrency=1).collect()
        assert result == [0, 10, 20, 30, 40]
        assert gauge.peak == 1

    @pytest.mark.asyncio
    async def test_invalid_window(self) -> None:
        with pytest.raises(ValueError):
            range_sequence(3).concurrent_map(lambda x: x, concurrency=0)

    @pytest.mark.asyncio
    async def test_fractional_window_rounds_up(self) -> None:
        gauge = Gauge()
        result = await range_sequence(9).concurrent_map(lambda x: gauge.run(x, 0.01), concurrency=2.5).collect()
        assert result == [x * 10 for x in range(9)]
        assert gauge.peak == 3

    def test_resolve_window(self) -> None:
        assert resolve_window(1) == 1
        assert resolve_window(0.2) == 1
        assert resolve_window(2.5) == 3
        with pytest.raises(ValueError):
            resolve_window(-0.5)

    @pytest.mark.asyncio
    async def test_sync_function_accepted(self) -> None:
        assert await range_sequence(4).concurrent_map(lambda x: x + 1, concurrency=2).collect() == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_default_window_from_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from procflow import clear_settings_cache

        monkeypatch.setenv("PROCFLOW_CONCURRENCY_WINDOW", "2")
        clear_settings_cache()
        gauge = Gauge()
        await range_sequence(6).concurrent_map(lambda x: gauge.run(x, 0.001)).collect()
        assert gauge.peak == 2


class TestFailure:
    @pytest.mark.asyncio
    async def test_failure_raised_in_position(self) -> None:
        async def fn(x: int) -> int:
            # Later items finish first; the failing one is slowest
            await asyncio.sleep(0.03 if x == 2 else 0.001 * (5 - x))
            if x == 2:
                raise ValueError("item 2")
            return x

        seq = range_sequence(10).concurrent_map(fn, concurrency=4)
        received: list[int] = []
        with pytest.raises(ValueError, match="item 2"):
            async for item in seq:
                received.append(item)
        assert received == [0, 1]

    @pytest.mark.asyncio
    async def test_failure_cancels_later_work(self) -> None:
        gauge = Gauge()

        async def fn(x: int) -> int:
            if x == 0:
                await asyncio.sleep(0.001)
                raise RuntimeError("first failed")
            return await gauge.run(x, 10)

        with pytest.raises(RuntimeError, match="first failed"):
            await range_sequence(100).concurrent_map(fn, concurrency=3).collect()
        assert sorted(gauge.cancelled) == sorted(gauge.started)
        assert gauge.active == 0
        assert max(gauge.started) <= 3

    @pytest.mark.asyncio
    async def test_earlier_items_emitted_before_failure(self) -> None:
        async def fn(x: int) -> int:
            if x == 3:
                raise KeyError(x)
            await asyncio.sleep(0.01)
            return x

        received: list[int] = []
        with pytest.raises(KeyError):
            async for item in range_sequence(8).concurrent_map(fn, concurrency=8):
                received.append(item)
        assert received == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_upstream_failure_after_admitted_items(self) -> None:
        async def source() -> AsyncIterator[int]:
            yield 1
            yield 2
            raise OSError("source broke")

        async def slow(x: int) -> int:
            await asyncio.sleep(0.01)
            return x

        received: list[int] = []
        with pytest.raises(OSError, match="source broke"):
            async for item in iterate(source()).concurrent_map(slow, concurrency=4):
                received.append(item)
        assert received == [1, 2]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_early_close_cancels_in_flight(self) -> None:
        gauge = Gauge()
        closed: list[bool] = []

        async def source() -> AsyncIterator[int]:
            try:
                for i in range(100):
                    yield i
            finally:
                closed.append(True)

        async def fn(x: int) -> int:
            return await gauge.run(x, 0 if x == 0 else 10)

        assert await iterate(source()).concurrent_map(fn, concurrency=4).first() == 0
        assert gauge.active == 0
        assert set(gauge.cancelled) == {1, 2, 3}
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_consumer_task_cancelled(self) -> None:
        gauge = Gauge()
        started = asyncio.Event()

        async def fn(x: int) -> int:
            started.set()
            return await gauge.run(x, 10)

        async def consume() -> list[int]:
            return await range_sequence(10).concurrent_map(fn, concurrency=3).collect()

        task = asyncio.create_task(consume())
        await started.wait()
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert gauge.active == 0
        assert len(gauge.cancelled) == 3


class TestUnordered:
    @pytest.mark.asyncio
    async def test_completion_order(self) -> None:
        async def fn(x: int) -> int:
            await asyncio.sleep(0.001 * (5 - x))
            return x

        result = await range_sequence(5).concurrent_unordered_map(fn, concurrency=5).collect()
        assert sorted(result) == [0, 1, 2, 3, 4]
        assert result[0] == 4

    @pytest.mark.asyncio
    async def test_bounded(self) -> None:
        gauge = Gauge()
        result = await range_sequence(12).concurrent_unordered_map(lambda x: gauge.run(x, 0.001), concurrency=3).collect()
        assert sorted(result) == [x * 10 for x in range(12)]
        assert gauge.peak <= 3

    @pytest.mark.asyncio
    async def test_failure_cancels_rest(self) -> None:
        gauge = Gauge()

        async def fn(x: int) -> int:
            if x == 1:
                raise ValueError("bad")
            return await gauge.run(x, 10)

        with pytest.raises(ValueError, match="bad"):
            await range_sequence(10).concurrent_unordered_map(fn, concurrency=3).collect()
        assert gauge.active == 0


class TestStandalone:
    @pytest.mark.asyncio
    async def test_ordered_map_on_plain_generator(self) -> None:
        async def source() -> AsyncIterator[str]:
            for w in ("a", "b", "c"):
                yield w

        async def upper(w: str) -> str:
            return w.upper()

        assert [x async for x in ordered_map(source(), upper, window=2)] == ["A", "B", "C"]
