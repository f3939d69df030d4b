# src/cache/memory_store.py — v1
"""In-process TTL cache guarded by an asyncio lock.

Entries expire exactly ttl_seconds after insertion. Expired entries are
evicted lazily on lookup; there is no background sweep. Nothing survives
a process restart.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Callable

from evidencerank.cache.base_cache_store import BaseCacheStore
from evidencerank.cache.models import CacheEntry
from evidencerank.core.models import RankedResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 1024


class MemoryCacheStore(BaseCacheStore):
    """Mutex-guarded mapping fingerprint -> CacheEntry.

    Args:
        ttl_seconds: Entry lifetime.
        max_entries: Size bound; the oldest insertion is evicted first.
        clock: Monotonic time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    async def get(self, fingerprint: str) -> RankedResult | None:
        async with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            if entry.is_expired(self._clock(), self._ttl):
                del self._entries[fingerprint]
                logger.debug("Cache entry expired: %s", fingerprint[:12])
                return None
            # Copy so callers cannot mutate what later hits will see
            return entry.result.model_copy(deep=True)

    async def put(self, fingerprint: str, result: RankedResult) -> None:
        entry = CacheEntry(
            fingerprint=fingerprint,
            result=result.model_copy(deep=True),
            created_at=self._clock(),
        )
        async with self._lock:
            self._entries.pop(fingerprint, None)
            self._entries[fingerprint] = entry
            self._evict_locked()

    async def delete(self, fingerprint: str) -> None:
        async with self._lock:
            self._entries.pop(fingerprint, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_locked(self) -> None:
        """Drop expired entries, then the oldest ones above max_entries."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now, self._ttl)]
        for key in expired:
            del self._entries[key]
        while len(self._entries) > self._max_entries:
            key, _ = self._entries.popitem(last=False)
            logger.debug("Cache full, evicted %s", key[:12])


class NullCacheStore(BaseCacheStore):
    """Cache that never stores anything (CACHE_ENABLED=false)."""

    async def get(self, fingerprint: str) -> RankedResult | None:
        return None

    async def put(self, fingerprint: str, result: RankedResult) -> None:
        return None

    async def delete(self, fingerprint: str) -> None:
        return None

    async def clear(self) -> None:
        return None

    def __len__(self) -> int:
        return 0
