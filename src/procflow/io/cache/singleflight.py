"""Keyed memoization with at-most-once concurrent computation.

A SingleflightCache maps keys to computed values. Concurrent requests for the
same key share one computation: the first caller starts it, later callers
attach to it, and all of them receive the identical outcome. Successful
values are kept; failures are delivered to every waiter and then forgotten,
so the next request recomputes.

Optional TTL expiry and an entry-count bound are layered on top. They affect
only completed entries, never an in-flight computation.

Example:
    >>> cache: SingleflightCache[str, bytes] = SingleflightCache(ttl=600)
    >>> body = await cache.get_or_compute(url, lambda: fetch(url))
    >>>
    >>> # Memoize a whole pipeline stage
    >>> listing = await cache.sequence("ls", lambda: run("ls", "-1"))
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import threading
import time
from collections.abc import AsyncIterable, Awaitable, Callable, Hashable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from procflow.foundation.config import get_settings
from procflow.io.streaming import encode_sorted
from procflow.runtime.observability import get_logger

if TYPE_CHECKING:
    from procflow.runtime.concurrency import Sequence

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
T = TypeVar("T")

__all__ = ["SingleflightCache", "CacheEntry", "fingerprint"]

log = get_logger("procflow.cache")

_MISSING = object()


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    """A completed value with expiration tracking."""
    value: V
    created_at: float
    expires_at: float | None

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() > self.expires_at


class SingleflightCache(Generic[K, V]):
    """In-memory singleflight cache.

    The entry map is the only shared mutable structure and every access goes
    through one lock. There is no process-wide instance; create one per use.

    Args:
        ttl: Seconds a completed entry stays valid (default from settings,
            None = forever)
        max_entries: Completed entries kept before eviction (default from
            settings, None = unbounded)
    """

    __slots__ = ("_entries", "_inflight", "_ttl", "_max_entries", "_lock", "_hits", "_misses", "_joins", "_failures")

    def __init__(self, ttl: float | None = None, max_entries: int | None = None) -> None:
        settings = get_settings().cache
        self._ttl = ttl if ttl is not None else settings.ttl
        self._max_entries = max_entries if max_entries is not None else settings.max_entries
        if self._ttl is not None and self._ttl <= 0:
            raise ValueError(f"ttl must be positive; got {self._ttl}")
        if self._max_entries is not None and self._max_entries < 1:
            raise ValueError(f"max_entries must be >= 1; got {self._max_entries}")
        self._entries: dict[K, CacheEntry[V]] = {}
        self._inflight: dict[K, asyncio.Task[V]] = {}
        self._lock = threading.RLock()
        self._hits = self._misses = self._joins = self._failures = 0

    async def get_or_compute(self, key: K, compute: Callable[[], V] | Callable[[], Awaitable[V]]) -> V:
        """Return the value for ``key``, computing it at most once concurrently.

        ``compute`` may be sync or async. If the caller is cancelled while
        waiting, the shared computation keeps running for the other waiters.

        Raises:
            Exception: Whatever ``compute`` raised, identically for all waiters
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if not entry.expired:
                    self._hits += 1
                    return entry.value
                del self._entries[key]
            task = self._inflight.get(key)
            if task is None:
                self._misses += 1
                task = asyncio.ensure_future(self._compute(key, compute))
                task.add_done_callback(_observe)
                self._inflight[key] = task
            else:
                self._joins += 1
        return await asyncio.shield(task)

    async def _compute(self, key: K, compute: Callable[[], V] | Callable[[], Awaitable[V]]) -> V:
        log.debug("cache compute", key=repr(key))
        task = asyncio.current_task()
        try:
            value = compute()
            if inspect.isawaitable(value):
                value = await value
        except BaseException as e:
            with self._lock:
                if self._inflight.get(key) is task:
                    del self._inflight[key]
                self._failures += 1
            log.debug("cache compute failed", key=repr(key), error=type(e).__name__)
            raise
        with self._lock:
            # A computation detached by invalidate() still answers its waiters but is not stored.
            if self._inflight.get(key) is task:
                del self._inflight[key]
                self._store(key, value)  # type: ignore[arg-type]
        return value  # type: ignore[return-value]

    def _store(self, key: K, value: V) -> None:
        """Insert a completed entry. Caller must hold lock."""
        if self._max_entries is not None and len(self._entries) >= self._max_entries:
            self._evict_unlocked()
        now = time.monotonic()
        self._entries[key] = CacheEntry(
            value=value,
            created_at=now,
            expires_at=now + self._ttl if self._ttl is not None else None,
        )

    def _evict_unlocked(self) -> None:
        """Remove expired entries, then the oldest quarter if still full. Caller must hold lock."""
        expired = [k for k, v in self._entries.items() if v.expired]
        for key in expired:
            del self._entries[key]

        limit = self._max_entries or 0
        if len(self._entries) >= limit:
            oldest = sorted(self._entries, key=lambda k: self._entries[k].created_at)
            for key in oldest[: max(1, limit // 4)]:
                del self._entries[key]

    # ─────────────────────────────────────────────────────────────────────────
    # Inspection and invalidation
    # ─────────────────────────────────────────────────────────────────────────

    def peek(self, key: K, default: V | None = None) -> V | None:
        """Completed value for ``key`` without computing (``default`` if absent)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.expired:
                del self._entries[key]
                return default
            return entry.value

    def invalidate(self, key: K) -> bool:
        """Forget ``key``.

        A computation already in flight still answers its current waiters,
        but its result is not stored. Returns whether anything was removed.
        """
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            return self._inflight.pop(key, None) is not None or removed

    def clear(self) -> None:
        """Forget every entry (in-flight computations are detached, not cancelled)."""
        with self._lock:
            self._entries.clear()
            self._inflight.clear()

    def __contains__(self, key: object) -> bool:
        return self.peek(key, _MISSING) is not _MISSING  # type: ignore[arg-type]

    def __len__(self) -> int:
        return self.size

    @property
    def size(self) -> int:
        """Number of completed entries."""
        with self._lock:
            return len(self._entries)

    @property
    def inflight(self) -> int:
        """Number of computations currently running."""
        with self._lock:
            return len(self._inflight)

    def stats(self) -> dict[str, object]:
        """Get cache statistics for monitoring."""
        with self._lock:
            expired = sum(1 for v in self._entries.values() if v.expired)
            return {
                "total_entries": len(self._entries),
                "expired_entries": expired,
                "active_entries": len(self._entries) - expired,
                "inflight": len(self._inflight),
                "hits": self._hits,
                "misses": self._misses,
                "joins": self._joins,
                "failures": self._failures,
                "ttl": self._ttl,
                "max_entries": self._max_entries,
            }

    # ─────────────────────────────────────────────────────────────────────────
    # Sequence memoization
    # ─────────────────────────────────────────────────────────────────────────

    async def sequence(
        self,
        key: K,
        factory: Callable[[], AsyncIterable[T] | Iterable[T]],
    ) -> Sequence[T]:
        """Memoize a whole pipeline stage.

        The first request runs ``factory`` and collects its sequence; every
        request (including the first) gets a fresh Sequence replaying the
        cached items. Use keys not shared with :meth:`get_or_compute`.
        """
        from procflow.runtime.concurrency import iterate

        async def collect() -> tuple[T, ...]:
            return tuple(await iterate(factory()).collect())

        items = await self.get_or_compute(key, collect)  # type: ignore[arg-type]
        return iterate(items)  # type: ignore[arg-type]

    def __repr__(self) -> str:
        return f"SingleflightCache(size={self.size}, inflight={self.inflight}, ttl={self._ttl})"


def _observe(task: asyncio.Task[object]) -> None:
    # Waiters may all be gone; mark the outcome as retrieved.
    if not task.cancelled():
        task.exception()


def fingerprint(*parts: object, **named: object) -> str:
    """Stable cache key from JSON-compatible parts.

    Keys of mappings are sorted before hashing, so equal data gives equal
    keys regardless of insertion order. Non-JSON values fall back to str().

    Example:
        >>> fingerprint("grep", ["-c", "x"], env={"LANG": "C"})
        'a3f9...'
    """
    payload = encode_sorted([list(parts), named])
    return hashlib.sha256(payload).hexdigest()[:32]
