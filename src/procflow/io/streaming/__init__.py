"""Byte/text stream transforms and the JSON codec.

Transforms are plain ``AsyncIterator -> AsyncIterator`` functions usable with
``Sequence.transform`` or on their own.
"""

from .codec import decode, encode, encode_sorted, encode_str
from .transforms import (
    byte_lines,
    chunked_lines,
    decode_text,
    gunzip,
    json_lines,
    lines,
    rechunk,
    to_bytes,
    to_json_lines,
)

__all__ = [
    # Codec
    "encode", "decode", "encode_str", "encode_sorted",
    # Transforms
    "lines", "chunked_lines", "byte_lines", "to_bytes", "rechunk",
    "decode_text", "gunzip", "json_lines", "to_json_lines",
]
