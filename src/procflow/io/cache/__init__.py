"""Singleflight caching: at-most-once concurrent computation per key."""

from .singleflight import CacheEntry, SingleflightCache, fingerprint

__all__ = ["SingleflightCache", "CacheEntry", "fingerprint"]
