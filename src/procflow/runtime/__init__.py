"""Runtime - Sequences, concurrency, processes, and monitoring.

Contains: concurrency (sequences, bridges, concurrent maps), process,
observability.
"""

from __future__ import annotations

__all__ = [
    # Concurrency
    "Sequence", "ByteSequence", "iterate", "range_sequence",
    "Bridge", "produce", "ordered_map", "unordered_map",
    # Process
    "ProcessHandle", "ProcessSequence", "ProcessState", "ProcessOptions",
    "StreamMode", "StderrMode", "run",
    # Observability
    "BoundLogger", "configure_logging", "get_logger", "log_context",
]


def __getattr__(name: str):
    """Lazy imports to avoid circular dependencies."""
    concurrency_attrs = {
        "Sequence", "ByteSequence", "iterate", "range_sequence",
        "Bridge", "produce", "ordered_map", "unordered_map",
    }
    if name in concurrency_attrs:
        from . import concurrency
        return getattr(concurrency, name)

    process_attrs = {
        "ProcessHandle", "ProcessSequence", "ProcessState", "ProcessOptions",
        "StreamMode", "StderrMode", "run",
    }
    if name in process_attrs:
        from . import process
        return getattr(process, name)

    observability_attrs = {"BoundLogger", "configure_logging", "get_logger", "log_context"}
    if name in observability_attrs:
        from . import observability
        return getattr(observability, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
