# src/rag/embeddings/openai_embedder.py — v2
"""OpenAI embedding adapter.

Uses the openai SDK for embedding generation.
Models: text-embedding-3-small (1536 dims), text-embedding-3-large.
"""

from __future__ import annotations

import logging

from evidencerank.core.errors import InvalidResponse
from evidencerank.rag.embeddings.base_embedder import BaseEmbedder

logger = logging.getLogger(__name__)


class OpenAIEmbedder(BaseEmbedder):
    """Embeddings via OpenAI API."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        dimensions: int = 1536,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._dimensions = dimensions
        self.__client = None

    @property
    def _client(self):
        if self.__client is None:
            import openai

            self.__client = openai.AsyncOpenAI(api_key=self._api_key or None)
        return self.__client

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in one batched request."""
        if not texts:
            return []
        response = await self._client.embeddings.create(
            input=texts, model=self._model
        )
        if len(response.data) != len(texts):
            raise InvalidResponse(
                f"OpenAI returned {len(response.data)} embeddings for {len(texts)} texts"
            )
        return [item.embedding for item in response.data]

    async def embed_query(self, query: str) -> list[float]:
        response = await self._client.embeddings.create(
            input=[query], model=self._model
        )
        if not response.data:
            raise InvalidResponse(f"OpenAI returned no embedding for model {self._model}")
        return response.data[0].embedding

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model_name(self) -> str:
        return self._model
