"""Chunk transforms for byte and text streams.

Each transform takes an async iterator and returns an async iterator. A
transform keeps only its own carry-over buffer (a partial line, a short
chunk, decompressor state) and flushes it when the upstream ends. Every
transform closes its input when it finishes or is closed.

Transforms that need a parameter are factories returning the transform:

    >>> seq.transform(rechunk(16384)).transform(decode_text("latin-1"))

Line splitting follows ``\\n`` and drops a trailing ``\\r``, so both Unix and
Windows line endings work. A final newline does not produce an empty line.
"""

from __future__ import annotations

import codecs
import zlib
from collections.abc import AsyncIterable, AsyncIterator, Callable

from .codec import decode, encode_str

ByteItem = bytes | bytearray | memoryview | str | list[str] | list[bytes] | tuple[str | bytes, ...]

__all__ = [
    "lines",
    "chunked_lines",
    "byte_lines",
    "to_bytes",
    "rechunk",
    "decode_text",
    "gunzip",
    "json_lines",
    "to_json_lines",
]

_LF = b"\n"
_CR = 13


async def _release(stream: object) -> None:
    close = getattr(stream, "aclose", None)
    if close is not None:
        await close()


# ─────────────────────────────────────────────────────────────────────────────
# Line Splitting
# ─────────────────────────────────────────────────────────────────────────────


def _strip_cr(line: bytes) -> bytes:
    return line[:-1] if line and line[-1] == _CR else line


async def byte_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[list[bytes]]:
    """Split byte chunks into lines, one list of complete lines per chunk.

    Chunks that complete no line produce nothing. The partial line left at
    the end of the stream is flushed as a final list.
    """
    partial = bytearray()
    try:
        async for chunk in chunks:
            pieces = bytes(chunk).split(_LF)
            if len(pieces) == 1:
                partial += pieces[0]
                continue
            partial += pieces[0]
            complete = [_strip_cr(bytes(partial)), *(_strip_cr(p) for p in pieces[1:-1])]
            partial = bytearray(pieces[-1])
            yield complete
        if partial:
            yield [_strip_cr(bytes(partial))]
    finally:
        await _release(chunks)


async def lines(chunks: AsyncIterable[bytes], encoding: str = "utf-8") -> AsyncIterator[str]:
    """Split byte chunks into decoded text lines without terminators."""
    grouped = chunked_lines(chunks, encoding)
    try:
        async for group in grouped:
            for line in group:
                yield line
    finally:
        await grouped.aclose()


async def chunked_lines(chunks: AsyncIterable[bytes], encoding: str = "utf-8") -> AsyncIterator[list[str]]:
    """Like :func:`lines`, but yields the lines of each chunk together.

    Keeps the per-item overhead low for large outputs of short lines.
    """
    grouped = byte_lines(chunks)
    try:
        async for group in grouped:
            yield [line.decode(encoding) for line in group]
    finally:
        await grouped.aclose()


# ─────────────────────────────────────────────────────────────────────────────
# Bytes and Text
# ─────────────────────────────────────────────────────────────────────────────


def _encode_item(item: object) -> bytes:
    if isinstance(item, (bytes, bytearray, memoryview)):
        return bytes(item)
    if isinstance(item, str):
        return item.encode("utf-8") + _LF
    raise TypeError(f"expected str or bytes, got {type(item).__name__}")


async def to_bytes(items: AsyncIterable[ByteItem]) -> AsyncIterator[bytes]:
    """Convert mixed items to byte chunks.

    ``bytes`` pass through unchanged. A ``str`` is a line: it is UTF-8
    encoded with a trailing newline. A list or tuple of either is written as
    one chunk with each element converted the same way.

    Raises:
        TypeError: An item (or list element) is of another type
    """
    try:
        async for item in items:
            if isinstance(item, (list, tuple)):
                yield b"".join(_encode_item(piece) for piece in item)
            else:
                yield _encode_item(item)
    finally:
        await _release(items)


def rechunk(size: int) -> Callable[[AsyncIterable[bytes]], AsyncIterator[bytes]]:
    """Buffer a byte stream so every chunk but the last is at least ``size``.

    Data is never split, only joined. A ``size`` of 0 or less passes chunks
    through unchanged.
    """

    async def _rechunk(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        pending: list[bytes] = []
        length = 0
        try:
            async for chunk in chunks:
                if size <= 0:
                    yield chunk
                    continue
                pending.append(chunk)
                length += len(chunk)
                if length >= size:
                    yield b"".join(pending)
                    pending, length = [], 0
            if pending:
                yield b"".join(pending)
        finally:
            await _release(chunks)

    return _rechunk


def decode_text(encoding: str = "utf-8") -> Callable[[AsyncIterable[bytes]], AsyncIterator[str]]:
    """Decode bytes to text incrementally, without splitting lines.

    Multi-byte characters split across chunks are decoded correctly. Invalid
    data raises ``UnicodeDecodeError``.
    """

    async def _decode(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
        decoder = codecs.getincrementaldecoder(encoding)(errors="strict")
        try:
            async for chunk in chunks:
                if text := decoder.decode(chunk):
                    yield text
            if tail := decoder.decode(b"", final=True):
                yield tail
        finally:
            await _release(chunks)

    return _decode


async def gunzip(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Decompress a gzip stream (multiple concatenated members allowed).

    Raises:
        zlib.error: Corrupt data
        EOFError: The stream ended inside a gzip member
    """
    inflater = zlib.decompressobj(wbits=31)
    fed = False
    try:
        async for chunk in chunks:
            data = bytes(chunk)
            while data:
                fed = True
                if out := inflater.decompress(data):
                    yield out
                if not inflater.eof:
                    break
                # Next member starts in the leftover bytes
                data = inflater.unused_data
                inflater = zlib.decompressobj(wbits=31)
                fed = False
        if out := inflater.flush():
            yield out
        if fed and not inflater.eof:
            raise EOFError("compressed stream ended before the end of a gzip member")
    finally:
        await _release(chunks)


# ─────────────────────────────────────────────────────────────────────────────
# JSON Lines
# ─────────────────────────────────────────────────────────────────────────────


async def json_lines(items: AsyncIterable[str | bytes]) -> AsyncIterator[object]:
    """Parse each line as JSON (orjson). Blank lines are skipped."""
    try:
        async for item in items:
            if item.strip():
                yield decode(item)
    finally:
        await _release(items)


async def to_json_lines(items: AsyncIterable[object]) -> AsyncIterator[str]:
    """Serialize each item to a JSON line (orjson), without the newline."""
    try:
        async for item in items:
            yield encode_str(item)
    finally:
        await _release(items)
