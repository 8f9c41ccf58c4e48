"""Bounded standard-error capture for error reports."""

from __future__ import annotations

from collections import deque
from collections.abc import AsyncIterable

__all__ = ["StderrTail", "drain"]

ELLIPSIS = "..."


class StderrTail:
    """Keeps the last lines of a stderr stream within a line and byte bound.

    Lines beyond the bound are dropped from the front. When anything was
    dropped the excerpt starts with an ``...`` marker line.

    Args:
        max_lines: Lines to keep
        max_bytes: Upper bound on kept bytes (a single oversized line keeps
            only its end)
    """

    __slots__ = ("_lines", "_max_lines", "_max_bytes", "_size", "_partial", "_truncated")

    def __init__(self, max_lines: int, max_bytes: int) -> None:
        self._lines: deque[bytes] = deque()
        self._max_lines = max_lines
        self._max_bytes = max_bytes
        self._size = 0
        self._partial = bytearray()
        self._truncated = False

    def feed(self, chunk: bytes) -> None:
        *complete, rest = chunk.split(b"\n")
        for piece in complete:
            self._partial += piece
            self._push(bytes(self._partial))
            self._partial.clear()
        self._partial += rest
        if len(self._partial) > self._max_bytes:
            del self._partial[: len(self._partial) - self._max_bytes]
            self._truncated = True

    def finish(self) -> None:
        """Flush a final unterminated line."""
        if self._partial:
            self._push(bytes(self._partial))
            self._partial.clear()

    def _push(self, line: bytes) -> None:
        if line.endswith(b"\r"):
            line = line[:-1]
        if len(line) > self._max_bytes:
            line = line[-self._max_bytes:]
            self._truncated = True
        self._lines.append(line)
        self._size += len(line)
        while len(self._lines) > self._max_lines or self._size > self._max_bytes:
            self._size -= len(self._lines.popleft())
            self._truncated = True

    @property
    def truncated(self) -> bool:
        return self._truncated

    @property
    def lines(self) -> list[str]:
        decoded = [line.decode("utf-8", errors="replace") for line in self._lines]
        if self._partial:
            decoded.append(self._partial.decode("utf-8", errors="replace"))
        return [ELLIPSIS, *decoded] if self._truncated else decoded

    def excerpt(self) -> str | None:
        """Kept lines joined with newlines, or None if nothing was written."""
        lines = self.lines
        return "\n".join(lines) if lines else None


async def drain(chunks: AsyncIterable[bytes], tail: StderrTail | None = None) -> None:
    """Read a stream to the end, feeding ``tail`` when given."""
    async for chunk in chunks:
        if tail is not None:
            tail.feed(chunk)
    if tail is not None:
        tail.finish()
