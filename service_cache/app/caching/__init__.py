"""
Cache server caching package.

Provides the cache entry record and the in-memory store. Entries are
immutable once created; the store is the only owner of them.
"""

from .entry import CacheEntry
from .store import Cache

__all__ = ["CacheEntry", "Cache"]
