"""I/O layer: stream transforms, codecs, and caching."""
