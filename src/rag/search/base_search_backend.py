# src/rag/search/base_search_backend.py — v1
"""Abstract retrieval backend: the store that executes hybrid search.

Records are plain dicts with keys id, parent_id, position_index, text,
cosine_similarity, lexical_rank, hybrid_score and optionally vector.
The hybrid retriever normalizes them, so backends may also use the
camelCase or provider-specific aliases it understands.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BaseSearchBackend(ABC):
    """Unified interface for knowledge-base search backends."""

    @abstractmethod
    async def hybrid_search(
        self,
        vector: list[float],
        text: str,
        k: int,
        min_similarity: float,
    ) -> list[dict[str, Any]]:
        """Fused vector + lexical search.

        Returns at most k records sorted by hybrid score descending, all with
        cosine_similarity >= min_similarity.
        """

    @abstractmethod
    async def lexical_search(self, text: str, k: int) -> list[dict[str, Any]]:
        """Lexical-only search; no vector scoring."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Backend identifier (memory, supabase)."""
