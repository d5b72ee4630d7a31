"""Catalog Search Cache - remembers artist search results between reconciliations.

Hey future me - the show sync sees the SAME unknown artist on every one of their
events (a tour is 40 events). Without this, each event burns a catalog search against
the quota for an answer we got 2 seconds ago.

- Keyed by normalize_name(query), so "Beyoncé" and "beyonce " share an entry
- TTL expiration (default 1 hour), LRU eviction at max_entries
- purge_expired() is called by the cache maintenance job
- Empty results are cached too (that IS the answer for a stub artist)
"""

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from setlistsync.domain.dtos import CatalogArtistDTO
from setlistsync.domain.ports import IMusicCatalogClient
from setlistsync.domain.value_objects import normalize_name

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    query: str
    results: list[CatalogArtistDTO]
    created_at: float
    hit_count: int = 0


@dataclass
class CacheStats:
    total_queries: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    evictions: int = 0
    expired_purged: int = 0

    @property
    def hit_rate(self) -> float:
        """Cache hit rate as percentage."""
        if self.total_queries == 0:
            return 0.0
        return (self.cache_hits / self.total_queries) * 100


class CatalogSearchCache:
    """TTL + LRU cache in front of IMusicCatalogClient.search_artists."""

    def __init__(
        self,
        catalog: IMusicCatalogClient,
        ttl_seconds: float = 3600,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._catalog = catalog
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def search_artists(self, name: str) -> list[CatalogArtistDTO]:
        """Cached artist search. Upstream errors propagate and are not cached."""
        key = normalize_name(name)
        async with self._lock:
            self._stats.total_queries += 1
            entry = self._cache.get(key)
            if entry is not None and self._clock() - entry.created_at <= self._ttl:
                entry.hit_count += 1
                self._cache.move_to_end(key)
                self._stats.cache_hits += 1
                return entry.results
            if entry is not None:
                del self._cache[key]
            self._stats.cache_misses += 1

        # Upstream call outside the lock: it can wait minutes in the rate limiter
        results = await self._catalog.search_artists(name)

        async with self._lock:
            while len(self._cache) >= self._max_entries:
                self._cache.popitem(last=False)
                self._stats.evictions += 1
            self._cache[key] = CacheEntry(query=name, results=results, created_at=self._clock())
        return results

    async def invalidate(self, name: str) -> bool:
        async with self._lock:
            return self._cache.pop(normalize_name(name), None) is not None

    async def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were dropped."""
        now = self._clock()
        async with self._lock:
            expired = [k for k, e in self._cache.items() if now - e.created_at > self._ttl]
            for key in expired:
                del self._cache[key]
            self._stats.expired_purged += len(expired)
        if expired:
            logger.info("Catalog search cache: purged %d expired entries", len(expired))
        return len(expired)

    def get_stats(self) -> dict[str, float | int]:
        return {
            "entries": len(self._cache),
            "total_queries": self._stats.total_queries,
            "cache_hits": self._stats.cache_hits,
            "cache_misses": self._stats.cache_misses,
            "hit_rate": round(self._stats.hit_rate, 2),
            "evictions": self._stats.evictions,
            "expired_purged": self._stats.expired_purged,
        }
