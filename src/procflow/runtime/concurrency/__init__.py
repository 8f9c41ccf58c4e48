"""Async sequences, bridges, and bounded-concurrency mapping.

Sequences are lazy single-pass pipelines over one owned upstream. Bridges
adapt push-style producers to pull-style consumers with backpressure.
"""

from .bridge import Bridge, produce
from .ordered import ordered_map, resolve_window, unordered_map
from .sequence import ByteSequence, Sequence, iterate, range_sequence
from .stream import (
    aclose,
    batch_stream,
    chain_streams,
    enumerate_stream,
    filter_stream,
    flatten_stream,
    map_stream,
    skip_stream,
    take_stream,
    transform_stream,
)
from .tee import StreamTee, TeeBranch, tee_stream

__all__ = [
    # Sequences
    "Sequence", "ByteSequence", "iterate", "range_sequence",
    # Bridge
    "Bridge", "produce",
    # Concurrent mapping
    "ordered_map", "unordered_map", "resolve_window",
    # Stream combinators
    "aclose", "map_stream", "filter_stream", "take_stream", "skip_stream",
    "chain_streams", "flatten_stream", "batch_stream", "enumerate_stream",
    "transform_stream",
    # Fan-out
    "StreamTee", "TeeBranch", "tee_stream",
]
