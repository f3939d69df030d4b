# src/rag/embeddings/ollama_embedder.py — v3
"""Ollama embedding adapter (local inference).

Uses the Ollama REST API. The blocking HTTP call runs in a worker
thread so other in-flight queries keep progressing.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request

from evidencerank.core.errors import InvalidResponse, RemoteUnavailable
from evidencerank.rag.embeddings.base_embedder import BaseEmbedder

logger = logging.getLogger(__name__)


class OllamaEmbedder(BaseEmbedder):
    """Local embeddings via Ollama API.

    Args:
        model: Ollama embedding model name.
        base_url: Ollama server URL.
        dimensions: Vector size produced by the model.
        timeout_s: Socket timeout for each HTTP request.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        dimensions: int = 768,
        timeout_s: float = 20.0,
    ) -> None:
        self._model_name = model
        self._base_url = base_url.rstrip("/")
        self._dimensions = dimensions
        self._timeout_s = timeout_s

    async def embed_query(self, query: str) -> list[float]:
        return await asyncio.to_thread(self._embed_single, query)

    def _embed_single(self, text: str) -> list[float]:
        """Call Ollama embeddings endpoint for a single text."""
        url = f"{self._base_url}/api/embed"
        payload = json.dumps({"model": self._model_name, "input": text}).encode("utf-8")
        req = urllib.request.Request(
            url, data=payload, headers={"Content-Type": "application/json"}
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout_s) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except urllib.error.URLError as e:
            if isinstance(e, urllib.error.HTTPError) and e.code < 500:
                raise
            raise RemoteUnavailable(f"Ollama unreachable at {self._base_url}: {e}") from e
        embeddings = data.get("embeddings", [])
        if embeddings:
            return embeddings[0]
        raise InvalidResponse(f"Ollama returned no embeddings for model {self._model_name}")

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def model_name(self) -> str:
        return self._model_name
