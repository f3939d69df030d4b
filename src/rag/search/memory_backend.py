# src/rag/search/memory_backend.py — v1
"""In-process search backend over a list of chunks.

Vector ranking uses numpy cosine against the stored chunk vectors.
Lexical ranking uses rank_bm25 (BM25Plus), restricted to chunks sharing
at least one token with the query and normalized to [0, 1] by the best
score for that query.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable

import numpy as np
from rank_bm25 import BM25Plus

from evidencerank.core.errors import InvalidRequest
from evidencerank.core.models import Chunk
from evidencerank.core.similarity import cosine_to_many, l2_normalize
from evidencerank.rag.search.base_search_backend import BaseSearchBackend
from evidencerank.rag.search.fusion import (
    DEFAULT_OVERSAMPLE_FACTOR,
    DEFAULT_OVERSAMPLE_MIN,
    FusionWeights,
    fuse,
    hybrid_score,
    oversample_size,
)

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens (unicode aware, so Cyrillic works)."""
    return _TOKEN_RE.findall(text.casefold())


class InMemorySearchBackend(BaseSearchBackend):
    """Hybrid search over chunks held in memory.

    Args:
        chunks: Knowledge-base chunks. Vectors are L2-normalized on load;
            chunks without a usable vector only take part in lexical search.
        weights: Fusion weights.
        oversample_factor: Vector candidates = max(factor * k, oversample_min).
        oversample_min: Lower bound on vector candidates.
    """

    def __init__(
        self,
        chunks: Iterable[Chunk],
        weights: FusionWeights = FusionWeights(),
        oversample_factor: int = DEFAULT_OVERSAMPLE_FACTOR,
        oversample_min: int = DEFAULT_OVERSAMPLE_MIN,
    ) -> None:
        self._chunks: list[Chunk] = list(chunks)
        self._weights = weights
        self._oversample_factor = oversample_factor
        self._oversample_min = oversample_min

        self._tokens: list[list[str]] = [
            c.lexical_tokens if c.lexical_tokens is not None else tokenize(c.text)
            for c in self._chunks
        ]
        self._token_sets = [set(t) for t in self._tokens]
        self._bm25: BM25Plus | None = (
            BM25Plus(self._tokens) if any(self._tokens) else None
        )

        self._vector_rows: list[int] = []
        vectors: list[np.ndarray] = []
        for i, chunk in enumerate(self._chunks):
            if chunk.vector is None:
                continue
            try:
                vectors.append(l2_normalize(chunk.vector))
            except ValueError as e:
                logger.warning("Chunk %s has unusable vector: %s", chunk.id, e)
                continue
            self._vector_rows.append(i)

        dims = {v.shape[0] for v in vectors}
        if len(dims) > 1:
            raise ValueError(f"Chunk vectors have mixed dimensions: {sorted(dims)}")
        self._matrix = np.vstack(vectors) if vectors else np.empty((0, 0))

        logger.info(
            "In-memory corpus loaded: %d chunks, %d with vectors",
            len(self._chunks), len(self._vector_rows),
        )

    @classmethod
    def from_jsonl(cls, path: str | Path, **kwargs: Any) -> InMemorySearchBackend:
        """Load chunks from a JSON Lines file (one Chunk object per line)."""
        path = Path(path).expanduser()
        chunks: list[Chunk] = []
        with path.open(encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    chunks.append(Chunk.model_validate(json.loads(line)))
                except ValueError as e:
                    raise ValueError(f"{path}:{line_no}: invalid chunk record: {e}") from e
        return cls(chunks, **kwargs)

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def provider_name(self) -> str:
        return "memory"

    async def hybrid_search(
        self,
        vector: list[float],
        text: str,
        k: int,
        min_similarity: float,
    ) -> list[dict[str, Any]]:
        if not self._chunks or k <= 0:
            return []

        cosines = self._cosines(vector)
        lexical = self._lexical_ranks(text)

        # Oversampled vector neighbours united with every lexical match
        n_vector = oversample_size(k, self._oversample_factor, self._oversample_min)
        by_cosine = sorted(cosines, key=lambda i: cosines[i], reverse=True)[:n_vector]
        union = list(dict.fromkeys([*by_cosine, *lexical]))

        fused = fuse(
            ((str(i), cosines.get(i), lexical.get(i, 0.0)) for i in union),
            k=k,
            min_similarity=min_similarity,
            weights=self._weights,
        )
        return [
            self._record(int(f.id), f.cosine_similarity, f.lexical_rank, f.hybrid_score)
            for f in fused
        ]

    async def lexical_search(self, text: str, k: int) -> list[dict[str, Any]]:
        if not self._chunks or k <= 0:
            return []
        lexical = self._lexical_ranks(text)
        ranked = sorted(lexical.items(), key=lambda item: (-item[1], item[0]))[:k]
        return [
            self._record(i, None, lex, hybrid_score(None, lex, self._weights))
            for i, lex in ranked
        ]

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _cosines(self, vector: list[float]) -> dict[int, float]:
        """Cosine of the query against every chunk that has a vector."""
        if not self._vector_rows:
            return {}
        query = l2_normalize(vector)
        if query.shape[0] != self._matrix.shape[1]:
            raise InvalidRequest(
                f"Query vector has {query.shape[0]} dims, corpus has {self._matrix.shape[1]}"
            )
        sims = cosine_to_many(query, self._matrix)
        return {row: float(s) for row, s in zip(self._vector_rows, sims)}

    def _lexical_ranks(self, text: str) -> dict[int, float]:
        """Normalized BM25 rank for chunks sharing a token with the query."""
        query_tokens = tokenize(text)
        if self._bm25 is None or not query_tokens:
            return {}
        query_set = set(query_tokens)
        matched = [i for i, toks in enumerate(self._token_sets) if toks & query_set]
        if not matched:
            return {}
        scores = self._bm25.get_batch_scores(query_tokens, matched)
        best = float(max(scores))
        if best <= 0:
            return {i: 0.0 for i in matched}
        return {i: float(s) / best for i, s in zip(matched, scores)}

    def _record(
        self,
        index: int,
        cosine: float | None,
        lexical: float,
        fused: float,
    ) -> dict[str, Any]:
        chunk = self._chunks[index]
        return {
            "id": chunk.id,
            "parent_id": chunk.parent_id,
            "position_index": chunk.position_index,
            "text": chunk.text,
            "cosine_similarity": cosine,
            "lexical_rank": lexical,
            "hybrid_score": fused,
            "vector": chunk.vector,
        }
