"""
Feed Cache

In-memory store of finished feed payloads keyed by output format and
staleness window. Entries are replaced whole; the number of entries is
bounded with least-recently-used eviction.
"""
import logging
import time
from collections import OrderedDict
from collections.abc import Callable

from app.config import settings
from app.services.fetch_types import CacheEntry, CacheKey


logger = logging.getLogger(__name__)


class FeedCache:
    """
    Bounded, staleness-checked cache of merged feed payloads.

    All methods are synchronous and never await, so on a single event loop
    each call is atomic with respect to other request handlers.
    """

    def __init__(self, max_entries: int = 32, clock: Callable[[], float] = time.monotonic):
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def now(self) -> float:
        return self._clock()

    def get(self, key: CacheKey) -> CacheEntry | None:
        """
        Return the entry for ``key`` if it is younger than the key's window.

        Returns:
            The cached entry, or None on a miss (absent or stale)
        """
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if not entry.is_fresh(self.now()):
            logger.debug("Cache entry %s is stale", _describe(key))
            self.misses += 1
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        return entry

    def put(self, key: CacheKey, entry: CacheEntry) -> None:
        """Store ``entry`` under ``key``, replacing any previous entry."""
        self._entries[key] = entry
        self._entries.move_to_end(key)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.info("Evicted cache entry %s (capacity %s)", _describe(evicted), self.max_entries)

    def purge_expired(self) -> int:
        """
        Drop every entry older than its own staleness window.

        Returns:
            Number of entries removed
        """
        now = self.now()
        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Purged %s expired cache entr%s", len(expired), "y" if len(expired) == 1 else "ies")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict:
        now = self.now()
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "keys": [
                {
                    "format": key.output_format.value,
                    "ttl_seconds": key.ttl_seconds,
                    "age_seconds": round(entry.age(now), 3),
                    "size_bytes": len(entry.payload),
                }
                for key, entry in self._entries.items()
            ],
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries


def _describe(key: CacheKey) -> str:
    return f"merged-epg-{key.output_format.value}-{key.ttl_seconds}"


# Global singleton instance
_cache: FeedCache | None = None


def get_feed_cache() -> FeedCache:
    """
    Get or create the global feed cache singleton.

    Returns:
        The global FeedCache instance
    """
    global _cache
    if _cache is None:
        _cache = FeedCache(max_entries=settings.cache_max_entries)
    return _cache


def reset_feed_cache() -> None:
    """
    Reset the feed cache (mainly for testing).

    WARNING: Only use this in test environments!
    """
    global _cache
    _cache = None
