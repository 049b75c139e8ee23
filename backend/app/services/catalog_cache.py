"""
VendorCatalogCache: read-through cache of catalog lookups with single-flight
coalescing.

Layers, checked in order:
  1. in-process dict   (cache_key -> CatalogEntry)
  2. vendor_catalog    (Supabase table, upsert on cache_key)
  3. the caller's fetch coroutine

Only successful lookups (CatalogEntry) are written. Misses and timeouts are
never cached, so a later email retries them.

Single-flight: the first caller for a key starts one asyncio task; every
concurrent caller for the same key awaits that same task through
asyncio.shield. A waiter that is cancelled (item timeout, email deadline)
does not cancel the shared fetch, which still completes and fills the cache.

Entries are only removed by invalidate() / invalidate_vendor().
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from app.models.catalog import CatalogEntry, CatalogKey, EnrichmentResult

logger = logging.getLogger(__name__)

TABLE = "vendor_catalog"


class VendorCatalogCache:
    def __init__(self, db=None):
        """
        Args:
            db: Supabase client used for the persistent layer. None keeps the
                cache in memory only.
        """
        self._db = db
        self._memory: dict[str, CatalogEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def get(self, key: CatalogKey) -> Optional[CatalogEntry]:
        """Return the cached entry for key, or None. Never calls the catalog API."""
        cache_key = key.as_string()
        entry = self._memory.get(cache_key)
        if entry is not None:
            return entry
        if self._db is None:
            return None

        try:
            result = (
                self._db.table(TABLE)
                .select("*")
                .eq("cache_key", cache_key)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.warning(f"Catalog cache read failed for {cache_key}: {e}")
            return None

        if not result.data:
            return None
        entry = CatalogEntry(**result.data[0])
        self._memory[cache_key] = entry
        return entry

    def put(self, entry: CatalogEntry) -> None:
        """Store a successful lookup. Persistence failures are logged, not raised."""
        if not entry.fetched_at:
            entry = entry.model_copy(update={"fetched_at": datetime.now(timezone.utc).isoformat()})
        self._memory[entry.cache_key] = entry
        if self._db is None:
            return
        try:
            self._db.table(TABLE).upsert(entry.model_dump(), on_conflict="cache_key").execute()
        except Exception as e:
            logger.warning(f"Catalog cache write failed for {entry.cache_key}: {e}")

    async def get_or_fetch(
        self,
        key: CatalogKey,
        fetch: Callable[[], Awaitable[EnrichmentResult]],
    ) -> EnrichmentResult:
        """
        Return the cached entry, or run fetch() at most once across all
        concurrent callers for key and share its result.
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug(f"Catalog cache hit: {key.as_string()}")
            return cached

        cache_key = key.as_string()
        task = self._inflight.get(cache_key)
        if task is None:
            task = asyncio.ensure_future(self._run(cache_key, fetch))
            self._inflight[cache_key] = task
        else:
            logger.debug(f"Catalog lookup coalesced: {cache_key}")
        return await asyncio.shield(task)

    async def _run(self, cache_key: str, fetch: Callable[[], Awaitable[EnrichmentResult]]) -> EnrichmentResult:
        try:
            result = await fetch()
            if isinstance(result, CatalogEntry):
                self.put(result)
            return result
        finally:
            self._inflight.pop(cache_key, None)

    def invalidate(self, key: CatalogKey) -> int:
        """Remove one key from both layers. Returns the number of rows deleted."""
        cache_key = key.as_string()
        self._memory.pop(cache_key, None)
        if self._db is None:
            return 0
        result = self._db.table(TABLE).delete().eq("cache_key", cache_key).execute()
        return len(result.data or [])

    def invalidate_vendor(self, vendor: str) -> int:
        """Remove every cached entry for one vendor code."""
        vendor_key = CatalogKey.build(vendor, "", "", "").vendor
        for cache_key in [k for k, e in self._memory.items() if e.vendor == vendor_key]:
            del self._memory[cache_key]
        if self._db is None:
            return 0
        result = self._db.table(TABLE).delete().eq("vendor", vendor_key).execute()
        deleted = len(result.data or [])
        logger.info(f"Invalidated {deleted} catalog entries for vendor {vendor_key}")
        return deleted


_cache: Optional[VendorCatalogCache] = None


def get_catalog_cache() -> VendorCatalogCache:
    """Process-wide cache backed by the admin Supabase client."""
    global _cache
    if _cache is None:
        from app.db import supabase_admin
        _cache = VendorCatalogCache(supabase_admin)
    return _cache
