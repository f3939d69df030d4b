# src/cache/models.py — v2
"""Cache domain model: CacheEntry."""

from __future__ import annotations

from pydantic import BaseModel

from evidencerank.core.models import RankedResult


class CacheEntry(BaseModel):
    """Fingerprint-addressed result with its insertion time.

    created_at is read from the store's clock (monotonic seconds by
    default), not wall time, so TTL arithmetic is immune to clock jumps.
    """

    fingerprint: str
    result: RankedResult
    created_at: float

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        """An entry is expired from exactly created_at + ttl onwards."""
        return now >= self.created_at + ttl_seconds
