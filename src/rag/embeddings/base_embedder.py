# src/rag/embeddings/base_embedder.py — v2
"""Abstract embeddings interface.

Providers return raw, unnormalized vectors; the pipeline L2-normalizes
them before any cosine computation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseEmbedder(ABC):
    """Unified interface for all embedding providers."""

    @abstractmethod
    async def embed_query(self, query: str) -> list[float]:
        """Embed a single question."""

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts. Default: one call per text."""
        return [await self.embed_query(t) for t in texts]

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Output vector dimensions."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier."""
