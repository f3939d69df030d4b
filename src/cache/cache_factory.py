# src/cache/cache_factory.py — v3
"""Factory for cache store instantiation."""

from __future__ import annotations

from evidencerank.cache.base_cache_store import BaseCacheStore
from evidencerank.config.settings import Settings


def create_cache_store(settings: Settings | None = None) -> BaseCacheStore:
    """Instantiate the configured cache backend.

    Args:
        settings: Application settings. Defaults to an in-memory cache with
            a 5 minute TTL.

    Returns:
        Configured BaseCacheStore implementation.
    """
    from evidencerank.cache.memory_store import MemoryCacheStore, NullCacheStore

    if settings is None:
        return MemoryCacheStore()

    if not settings.cache_enabled or settings.cache_backend == "none":
        return NullCacheStore()

    if settings.cache_backend == "memory":
        return MemoryCacheStore(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )

    raise ValueError(f"Unsupported cache backend: {settings.cache_backend!r}")
