# src/cache/base_cache_store.py — v2
"""Abstract cache store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from evidencerank.core.models import RankedResult


class BaseCacheStore(ABC):
    """Unified interface for query result caches.

    Implementations must be safe under concurrent get/put from many
    in-flight queries, and get() must never return an expired entry.
    """

    @abstractmethod
    async def get(self, fingerprint: str) -> RankedResult | None:
        """Return the cached result, or None on miss or expiry."""

    @abstractmethod
    async def put(self, fingerprint: str, result: RankedResult) -> None:
        """Store a result under its fingerprint."""

    @abstractmethod
    async def delete(self, fingerprint: str) -> None:
        """Remove an entry if present."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove all entries."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of entries currently held (expired ones included)."""
