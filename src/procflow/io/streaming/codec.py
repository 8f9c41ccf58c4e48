"""JSON codec for line-oriented streams.

orjson is a core dependency; there is no fallback to stdlib json.

Usage:
    >>> from procflow.io.streaming import encode, decode
    >>> encode({"key": "value"})
    b'{"key":"value"}'
    >>> decode(b'{"key":"value"}')
    {'key': 'value'}
"""

from __future__ import annotations

import orjson

__all__ = ["encode", "decode", "encode_str", "encode_sorted"]

_OPTIONS = orjson.OPT_UTC_Z
_SORTED_OPTIONS = orjson.OPT_UTC_Z | orjson.OPT_SORT_KEYS


def encode(data: object) -> bytes:
    """Encode to JSON bytes."""
    return orjson.dumps(data, option=_OPTIONS)


def decode(data: bytes | bytearray | memoryview | str) -> object:
    """Decode from JSON bytes/str."""
    return orjson.loads(data)


def encode_str(data: object) -> str:
    """Encode to a JSON string."""
    return orjson.dumps(data, option=_OPTIONS).decode()


def encode_sorted(data: object) -> bytes:
    """Encode with sorted keys, for stable hashing."""
    return orjson.dumps(data, option=_SORTED_OPTIONS, default=str)
