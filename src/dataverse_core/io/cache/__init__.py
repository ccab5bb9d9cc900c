"""Metadata caching with per-class TTL.

Backends:
    - MetadataCache: Thread-safe in-memory store holding the six cache classes
      (table list, table descriptions, forward/reverse entity set names,
      important columns, readable entity names)
"""

from .cache import (
    SYSTEM_ENTITIES,
    CacheClass,
    CacheEntry,
    CacheStats,
    MetadataCache,
    make_key,
)

__all__ = [
    "MetadataCache",
    "CacheClass",
    "CacheEntry",
    "CacheStats",
    "make_key",
    "SYSTEM_ENTITIES",
]
