"""Procflow - Composable async sequences and process pipelines.

Lazy, single-pass async sequences with deterministic cleanup, a push-to-pull
bridge with backpressure, order-preserving concurrent mapping, child
processes as pipeline stages, and a singleflight cache.

Quick Start:
    >>> from procflow import iterate, run
    >>>
    >>> # Sequences are lazy; terminal consumers release everything upstream
    >>> await iterate(range(10)).filter(lambda n: n % 2).map(str).collect()
    ['1', '3', '5', '7', '9']
    >>>
    >>> # Processes are stages; exit codes become errors
    >>> out = await run("git", "log", "--oneline")
    >>> subjects = await out.lines().take(5).collect()
    >>>
    >>> # Pipe a sequence through a command
    >>> sorted_words = await (await iterate(["b", "a"]).pipe("sort")).lines().collect()

Concurrent Mapping:
    >>> async def fetch(url: str) -> bytes: ...
    >>> bodies = iterate(urls).concurrent_map(fetch, concurrency=8)  # input order kept

Push to Pull:
    >>> from procflow import Bridge, produce
    >>> async def ticks(bridge: Bridge[int]) -> None:
    ...     for i in range(3):
    ...         await bridge.write(i)
    >>> await produce(ticks).collect()
    [0, 1, 2]

Caching:
    >>> from procflow import SingleflightCache
    >>> cache = SingleflightCache(ttl=60)
    >>> value = await cache.get_or_compute("key", expensive)
"""

from __future__ import annotations

__version__ = "0.1.0"

# Errors
from .foundation.errors import (
    BridgeCancelledError,
    BridgeClosedError,
    EmptySequenceError,
    ErrorCode,
    ExitCodeError,
    InputStreamError,
    ProcessError,
    ProcessFailure,
    ProcflowError,
    SignalError,
    SpawnError,
    StageError,
)

# Configuration
from .foundation.config import ProcflowSettings, clear_settings_cache, get_settings

# Sequences and concurrency
from .runtime.concurrency import Bridge, ByteSequence, Sequence, iterate, ordered_map, produce, range_sequence, unordered_map

# Processes
from .runtime.process import (
    ProcessHandle,
    ProcessOptions,
    ProcessSequence,
    ProcessState,
    StderrMode,
    StreamMode,
    run,
)

# Observability
from .runtime.observability import configure_logging, get_logger, log_context

# I/O
from .io.cache import SingleflightCache, fingerprint
from .io.streaming import chunked_lines, decode_text, gunzip, json_lines, lines, rechunk, to_bytes, to_json_lines

__all__ = [
    "__version__",
    # Errors
    "ErrorCode", "ProcessFailure", "ProcflowError", "ProcessError", "SpawnError",
    "ExitCodeError", "SignalError", "InputStreamError", "BridgeClosedError",
    "BridgeCancelledError", "StageError", "EmptySequenceError",
    # Configuration
    "ProcflowSettings", "get_settings", "clear_settings_cache",
    # Sequences
    "Sequence", "ByteSequence", "iterate", "range_sequence",
    "Bridge", "produce", "ordered_map", "unordered_map",
    # Processes
    "ProcessHandle", "ProcessSequence", "ProcessState", "ProcessOptions",
    "StreamMode", "StderrMode", "run",
    # Observability
    "configure_logging", "get_logger", "log_context",
    # Cache
    "SingleflightCache", "fingerprint",
    # Transforms
    "lines", "chunked_lines", "to_bytes", "rechunk", "decode_text", "gunzip",
    "json_lines", "to_json_lines",
]
