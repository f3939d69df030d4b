# src/rag/retriever/hybrid_retriever.py — v1
"""Hybrid retriever: fused vector + lexical search with layered fallback.

Flow:
  1. Fused search at min_similarity (skipped when no query vector)
  2. Lexical-only search if (1) failed or returned nothing
  3. One fused retry at a relaxed threshold if (2) also returned nothing
  4. Empty outcome with fallback_used=True

Every backend call goes through the retry executor. Provider records are
normalized into ScoredCandidate and their hybrid score is recomputed
from the configured weights.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Sequence

from evidencerank.core.errors import InvalidResponse, RetryExhausted
from evidencerank.core.models import Chunk, RetrievalOutcome, ScoredCandidate
from evidencerank.llm.retry import RetryExecutor, RetryPolicy
from evidencerank.rag.search.base_search_backend import BaseSearchBackend
from evidencerank.rag.search.fusion import FusionWeights, hybrid_score

logger = logging.getLogger(__name__)

DEFAULT_RELAX_FACTOR = 0.5
DEFAULT_MIN_SIMILARITY_FLOOR = 0.1

# Accepted spellings per field, first match wins
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "chunk_id"),
    "parent_id": ("parent_id", "parentId", "document_id", "doc_id"),
    "position_index": ("position_index", "positionIndex", "chunk_index"),
    "text": ("text", "content"),
    "cosine_similarity": ("cosine_similarity", "cosineSimilarity", "similarity"),
    "lexical_rank": ("lexical_rank", "lexicalRank", "text_rank", "ts_rank"),
    "hybrid_score": ("hybrid_score", "hybridScore"),
    "vector": ("vector", "embedding"),
}


class HybridRetriever:
    """Turns a query vector and text into scored candidates.

    Args:
        backend: Search backend executing the queries.
        executor: Retry executor applied to every backend call.
        policy: Retry policy for backend calls.
        weights: Fusion weights used to recompute hybrid scores.
        relax_factor: Threshold multiplier for the relaxed retry.
        min_similarity_floor: Lower bound of the relaxed threshold.
    """

    def __init__(
        self,
        backend: BaseSearchBackend,
        executor: RetryExecutor | None = None,
        policy: RetryPolicy | None = None,
        weights: FusionWeights = FusionWeights(),
        relax_factor: float = DEFAULT_RELAX_FACTOR,
        min_similarity_floor: float = DEFAULT_MIN_SIMILARITY_FLOOR,
    ) -> None:
        self._backend = backend
        self._executor = executor or RetryExecutor()
        self._policy = policy or RetryPolicy()
        self._weights = weights
        self._relax_factor = relax_factor
        self._floor = min_similarity_floor

    async def search(
        self,
        vector: Sequence[float] | None,
        text: str,
        k: int,
        min_similarity: float,
    ) -> RetrievalOutcome:
        """Retrieve up to k candidates, falling back as needed.

        Args:
            vector: L2-normalized query embedding, or None to go lexical-only.
            text: Raw question text.
            k: Number of candidates wanted.
            min_similarity: Cosine threshold for the fused search.

        Returns:
            RetrievalOutcome; never raises for data-availability failures.
        """
        fallbacks: list[str] = []

        if vector is not None:
            try:
                candidates = await self._hybrid(vector, text, k, min_similarity)
            except RetryExhausted as e:
                logger.warning("Hybrid search failed, falling back to lexical: %s", e)
                fallbacks.append("hybrid_failed")
            else:
                if candidates:
                    return RetrievalOutcome(
                        candidates=candidates,
                        strategy="hybrid",
                        effective_min_similarity=min_similarity,
                    )
                logger.info("Hybrid search returned no candidates, falling back to lexical")
                fallbacks.append("hybrid_empty")
        else:
            fallbacks.append("no_query_vector")

        try:
            candidates = await self._lexical(text, k)
        except RetryExhausted as e:
            logger.warning("Lexical search failed: %s", e)
            fallbacks.append("lexical_failed")
        else:
            if candidates:
                fallbacks.append("lexical")
                return RetrievalOutcome(
                    candidates=candidates,
                    fallback_used=True,
                    strategy="lexical-fallback",
                    fallbacks=fallbacks,
                )
            fallbacks.append("lexical_empty")

        relaxed = self.relaxed_threshold(min_similarity)
        if vector is not None and relaxed < min_similarity:
            logger.info(
                "No candidates, retrying hybrid search at min_similarity=%.3f", relaxed
            )
            try:
                candidates = await self._hybrid(vector, text, k, relaxed)
            except RetryExhausted as e:
                logger.warning("Relaxed hybrid search failed: %s", e)
                fallbacks.append("relaxed_failed")
            else:
                if candidates:
                    fallbacks.append("relaxed_threshold")
                    return RetrievalOutcome(
                        candidates=candidates,
                        fallback_used=True,
                        strategy="hybrid",
                        effective_min_similarity=relaxed,
                        fallbacks=fallbacks,
                    )
                fallbacks.append("relaxed_empty")

        logger.warning("Retrieval exhausted every fallback: %s", ", ".join(fallbacks))
        return RetrievalOutcome(
            candidates=[],
            fallback_used=True,
            strategy="lexical-fallback",
            fallbacks=fallbacks,
        )

    def relaxed_threshold(self, min_similarity: float) -> float:
        """Threshold for the relaxed retry: scaled down, bounded by the floor."""
        return max(min_similarity * self._relax_factor, min(self._floor, min_similarity))

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------

    async def _hybrid(
        self,
        vector: Sequence[float],
        text: str,
        k: int,
        min_similarity: float,
    ) -> list[ScoredCandidate]:
        async def call() -> list[ScoredCandidate]:
            records = await self._backend.hybrid_search(list(vector), text, k, min_similarity)
            return self._normalize(records, k, min_similarity)

        return await self._executor.execute(call, self._policy, name="hybrid_search")

    async def _lexical(self, text: str, k: int) -> list[ScoredCandidate]:
        async def call() -> list[ScoredCandidate]:
            records = await self._backend.lexical_search(text, k)
            return self._normalize(records, k, None)

        return await self._executor.execute(call, self._policy, name="lexical_search")

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def _normalize(
        self,
        records: Any,
        k: int,
        min_similarity: float | None,
    ) -> list[ScoredCandidate]:
        """Convert provider records, enforce the threshold, order and cut to k."""
        if records is None:
            raise InvalidResponse("Search backend returned no payload")
        if not isinstance(records, list):
            raise InvalidResponse(
                f"Search backend returned {type(records).__name__}, expected list"
            )

        candidates: list[ScoredCandidate] = []
        seen: set[str] = set()
        for record in records:
            candidate = self._to_candidate(record)
            if candidate.id in seen:
                continue
            seen.add(candidate.id)
            if min_similarity is not None and (
                candidate.cosine_similarity is None
                or candidate.cosine_similarity < min_similarity
            ):
                continue
            candidates.append(candidate)

        # Stable sort keeps the provider's order among equal scores
        candidates.sort(key=lambda c: c.hybrid_score, reverse=True)
        return candidates[:k]

    def _to_candidate(self, record: Any) -> ScoredCandidate:
        if not isinstance(record, dict):
            raise InvalidResponse(f"Search record is {type(record).__name__}, expected dict")

        raw_id = _pick(record, "id")
        text = _pick(record, "text")
        if raw_id is None or text is None:
            raise InvalidResponse("Search record lacks id or text")

        cosine = _as_float(_pick(record, "cosine_similarity"))
        lexical = max(0.0, _as_float(_pick(record, "lexical_rank")) or 0.0)
        fused = hybrid_score(cosine, lexical, self._weights)

        reported = _as_float(_pick(record, "hybrid_score"))
        if reported is not None and not math.isclose(reported, fused, abs_tol=1e-6):
            logger.debug(
                "Backend hybrid score %.6f for %s differs from fused %.6f",
                reported, raw_id, fused,
            )

        position = _pick(record, "position_index")
        chunk = Chunk(
            id=str(raw_id),
            parent_id=str(_pick(record, "parent_id") or ""),
            position_index=int(position) if position is not None else 0,
            text=str(text),
            vector=_as_vector(_pick(record, "vector")),
        )
        return ScoredCandidate(
            chunk=chunk,
            cosine_similarity=cosine,
            lexical_rank=lexical,
            hybrid_score=fused,
        )


def _pick(record: dict[str, Any], field: str) -> Any:
    for key in _FIELD_ALIASES[field]:
        if key in record and record[key] is not None:
            return record[key]
    return None


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidResponse(f"Expected a number, got {value!r}") from e
    if not math.isfinite(result):
        raise InvalidResponse(f"Non-finite score {value!r}")
    return result


def _as_vector(value: Any) -> list[float] | None:
    """Stored vectors arrive as lists, or as pgvector text like '[0.1,0.2]'."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    if not isinstance(value, (list, tuple)) or not value:
        return None
    try:
        return [float(v) for v in value]
    except (TypeError, ValueError):
        return None
