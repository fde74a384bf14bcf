"""
Short-lived result cache for tree listings and file reads.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from workspace_fs.filesystem.paths import is_within

logger = logging.getLogger(__name__)

TREE_PREFIX = "tree:"
FILE_PREFIX = "file:"


def tree_key(path: str, depth: int) -> str:
    return f"{TREE_PREFIX}{path}:{depth}"


def file_key(path: str) -> str:
    return f"{FILE_PREFIX}{path}"


def key_path(key: str) -> Optional[str]:
    """Extract the absolute path embedded in a cache key."""
    if key.startswith(FILE_PREFIX):
        return key[len(FILE_PREFIX) :]
    if key.startswith(TREE_PREFIX):
        path, _, _depth = key[len(TREE_PREFIX) :].rpartition(":")
        return path
    return None


@dataclass
class CacheEntry:
    data: Any
    timestamp: float


class ResultCache:
    """
    TTL map keyed by ``tree:<path>:<depth>`` and ``file:<path>``.

    Entries older than the TTL are treated as absent and evicted on
    lookup. All access is serialized by a re-entrant lock, so the cache
    may be shared between the event loop and worker threads.

    Usage:
        cache = ResultCache(ttl_ms=5000)
        cache.set(file_key("/ws/a.txt"), result)
        cache.get(file_key("/ws/a.txt"))
        cache.invalidate("/ws/a.txt")
    """

    def __init__(
        self,
        ttl_ms: int = 5000,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            ttl_ms: Entry lifetime in milliseconds
            enabled: When False every lookup misses and nothing is stored
            clock: Time source in seconds (injectable for tests)
        """
        self.ttl = ttl_ms / 1000.0
        self.enabled = enabled
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            if self._clock() - entry.timestamp >= self.ttl:
                del self._entries[key]
                self.misses += 1
                return None

            self.hits += 1
            logger.debug(f"Cache hit: {key}")
            return entry.data

    def set(self, key: str, data: Any) -> None:
        if not self.enabled:
            return

        with self._lock:
            self._entries[key] = CacheEntry(data=data, timestamp=self._clock())

    def invalidate(self, path: str) -> int:
        """
        Drop every entry affected by a change at ``path``.

        Removes entries for the path itself, for anything below it, and
        tree listings of its ancestors (whose contents include it).

        Returns:
            Number of entries removed
        """
        path = os.path.abspath(path)

        with self._lock:
            stale = [
                key
                for key in self._entries
                if self._is_affected(key, path)
            ]
            for key in stale:
                del self._entries[key]

        if stale:
            logger.debug(f"Invalidated {len(stale)} cache entries for {path}")
        return len(stale)

    def invalidate_many(self, paths: Iterable[str]) -> int:
        return sum(self.invalidate(path) for path in paths)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "enabled": self.enabled,
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "ttlMs": int(self.ttl * 1000),
            }

    @staticmethod
    def _is_affected(key: str, path: str) -> bool:
        cached = key_path(key)
        if cached is None:
            return False
        if is_within(cached, path):
            return True
        return key.startswith(TREE_PREFIX) and is_within(path, cached)
