"""Tests for byte/text stream transforms and the JSON codec."""

from __future__ import annotations

import gzip
from collections.abc import AsyncIterator

import pytest

from procflow import ByteSequence, iterate
from procflow.io.streaming import (
    byte_lines,
    chunked_lines,
    decode,
    decode_text,
    encode,
    gunzip,
    json_lines,
    lines,
    rechunk,
    to_bytes,
    to_json_lines,
)


async def chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


async def drain(stream: AsyncIterator[object]) -> list[object]:
    return [item async for item in stream]


# ─────────────────────────────────────────────────────────────────────────────
# Lines
# ─────────────────────────────────────────────────────────────────────────────


class TestLines:
    @pytest.mark.asyncio
    async def test_lines_across_chunk_boundaries(self) -> None:
        assert await drain(lines(chunks(b"al", b"pha\nbe", b"ta\n", b"gamma"))) == ["alpha", "beta", "gamma"]

    @pytest.mark.asyncio
    async def test_crlf_and_empty_lines(self) -> None:
        assert await drain(lines(chunks(b"a\r\n\r\nb\r\n"))) == ["a", "", "b"]

    @pytest.mark.asyncio
    async def test_trailing_newline_adds_no_line(self) -> None:
        assert await drain(lines(chunks(b"x\n"))) == ["x"]
        assert await drain(lines(chunks())) == []

    @pytest.mark.asyncio
    async def test_multibyte_split_across_chunks(self) -> None:
        data = "héllo\nwörld\n".encode()
        assert await drain(lines(chunks(data[:2], data[2:9], data[9:]))) == ["héllo", "wörld"]

    @pytest.mark.asyncio
    async def test_chunked_lines_groups_per_chunk(self) -> None:
        result = await drain(chunked_lines(chunks(b"a\nb\nc", b"", b"d\ne\n")))
        assert result == [["a", "b"], ["cd", "e"]]

    @pytest.mark.asyncio
    async def test_byte_lines(self) -> None:
        assert await drain(byte_lines(chunks(b"\xff\n", b"z"))) == [[b"\xff"], [b"z"]]

    @pytest.mark.asyncio
    async def test_byte_sequence_lines(self) -> None:
        seq = ByteSequence(chunks(b"one\ntwo\n"))
        assert await seq.lines().collect() == ["one", "two"]

    @pytest.mark.asyncio
    async def test_closing_lines_closes_source(self) -> None:
        closed: list[bool] = []

        async def endless() -> AsyncIterator[bytes]:
            try:
                while True:
                    yield b"line\n"
            finally:
                closed.append(True)

        assert await ByteSequence(endless()).lines().take(2).collect() == ["line", "line"]
        assert closed == [True]


# ─────────────────────────────────────────────────────────────────────────────
# Bytes and text
# ─────────────────────────────────────────────────────────────────────────────


class TestBytes:
    @pytest.mark.asyncio
    async def test_to_bytes(self) -> None:
        items = iterate([b"raw", "line", ["a", b"b"]])
        assert await drain(to_bytes(items)) == [b"raw", b"line\n", b"a\nb"]

    @pytest.mark.asyncio
    async def test_to_bytes_rejects_other_types(self) -> None:
        with pytest.raises(TypeError):
            await drain(to_bytes(iterate([42])))

    @pytest.mark.asyncio
    async def test_rechunk_joins_small_chunks(self) -> None:
        result = await drain(rechunk(4)(chunks(b"ab", b"c", b"defgh", b"i")))
        assert result == [b"abcdefgh", b"i"]

    @pytest.mark.asyncio
    async def test_rechunk_zero_passes_through(self) -> None:
        assert await drain(rechunk(0)(chunks(b"a", b"b"))) == [b"a", b"b"]

    @pytest.mark.asyncio
    async def test_decode_text_incremental(self) -> None:
        data = "€uro".encode()
        assert "".join(await drain(decode_text()(chunks(data[:1], data[1:])))) == "€uro"

    @pytest.mark.asyncio
    async def test_decode_text_invalid(self) -> None:
        with pytest.raises(UnicodeDecodeError):
            await drain(decode_text()(chunks(b"\xff\xfe\xfa")))

    @pytest.mark.asyncio
    async def test_text_other_encoding(self) -> None:
        seq = ByteSequence(chunks("café".encode("latin-1")))
        assert await seq.text("latin-1").collect() == ["café"]


class TestGunzip:
    @pytest.mark.asyncio
    async def test_round_trip_in_small_chunks(self) -> None:
        payload = b"procflow " * 1000
        packed = gzip.compress(payload)
        pieces = [packed[i:i + 7] for i in range(0, len(packed), 7)]

        result = await ByteSequence(chunks(*pieces)).gunzip().collect()
        assert b"".join(result) == payload

    @pytest.mark.asyncio
    async def test_concatenated_members(self) -> None:
        packed = gzip.compress(b"first\n") + gzip.compress(b"second\n")
        assert await ByteSequence(chunks(packed)).gunzip().lines().collect() == ["first", "second"]

    @pytest.mark.asyncio
    async def test_truncated_stream(self) -> None:
        packed = gzip.compress(b"x" * 5000)
        with pytest.raises(EOFError):
            await drain(gunzip(chunks(packed[: len(packed) // 2])))


# ─────────────────────────────────────────────────────────────────────────────
# JSON lines
# ─────────────────────────────────────────────────────────────────────────────


class TestJson:
    @pytest.mark.asyncio
    async def test_json_lines(self) -> None:
        result = await ByteSequence(chunks(b'{"a": 1}\n\n[2, 3]\n')).lines().transform(json_lines).collect()
        assert result == [{"a": 1}, [2, 3]]

    @pytest.mark.asyncio
    async def test_to_json_lines(self) -> None:
        assert await iterate([{"k": "v"}, 1]).transform(to_json_lines).collect() == ['{"k":"v"}', "1"]

    def test_codec(self) -> None:
        assert encode({"a": [1, 2]}) == b'{"a":[1,2]}'
        assert decode('{"a": null}') == {"a": None}
