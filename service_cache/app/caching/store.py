"""
In-memory cache store for the cache server.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from shared.logging import get_logger
from .entry import CacheEntry, utcnow


class Cache:
    """Lock-guarded mapping from key to :class:`CacheEntry`.

    Expired entries are only removed by :meth:`sweep`, which every
    :meth:`lookup` runs first. There is no background timer, so
    :meth:`snapshot` may still list entries that have expired since the last
    lookup. Every operation, lookups included, takes the lock exclusively.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.logger = get_logger("cache.store")

    def insert(self, entry: CacheEntry) -> None:
        """Store ``entry``, replacing whatever was stored under its key."""
        with self._lock:
            self._entries[entry.key] = entry

    def lookup(self, key: str) -> Optional[CacheEntry]:
        """Sweep expired entries, then return the entry for ``key`` if any."""
        with self._lock:
            self._sweep_locked()
            return self._entries.get(key)

    def remove(self, key: str) -> None:
        """Drop ``key``. Absent keys are ignored."""
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        with self._lock:
            return self._sweep_locked()

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Serializable copy of every stored entry. Does not sweep."""
        with self._lock:
            return {key: entry.to_dict() for key, entry in self._entries.items()}

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        if expired:
            self.logger.debug("Swept expired entries", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
