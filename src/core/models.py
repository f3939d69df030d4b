# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

No module redefines these types; all imports come from core.models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SearchStrategy = Literal["hybrid", "lexical-fallback"]
ResultStatus = Literal["answered", "no_candidates", "generation_failed"]


# === QUERY ===


class Query(BaseModel):
    """One question with its retrieval parameters. Immutable."""

    model_config = ConfigDict(frozen=True)

    question: str
    k: int = Field(default=5, ge=1)
    min_similarity: float = Field(default=0.5, ge=0.0, le=1.0)
    mmr_lambda: float | None = Field(default=None, ge=0.0, le=1.0)


# === KNOWLEDGE BASE ===


class Chunk(BaseModel):
    """Retrievable unit of knowledge-base text. Read-only for the pipeline."""

    model_config = ConfigDict(frozen=True)

    id: str
    parent_id: str = ""
    position_index: int = 0
    text: str
    vector: list[float] | None = None
    lexical_tokens: list[str] | None = None


class ScoredCandidate(BaseModel):
    """A chunk annotated with its retrieval scores."""

    chunk: Chunk
    cosine_similarity: float | None = None
    lexical_rank: float = 0.0
    hybrid_score: float = 0.0

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def vector(self) -> list[float] | None:
        return self.chunk.vector


class RetrievalOutcome(BaseModel):
    """What the hybrid retriever hands back to the orchestrator."""

    candidates: list[ScoredCandidate] = Field(default_factory=list)
    fallback_used: bool = False
    strategy: SearchStrategy = "hybrid"
    effective_min_similarity: float | None = None
    fallbacks: list[str] = Field(default_factory=list)


class RankedResult(BaseModel):
    """Final output of one pipeline invocation, as cached and returned."""

    candidates: list[ScoredCandidate] = Field(default_factory=list)
    confidence: float = 0.0
    answer: str = ""
    status: ResultStatus = "answered"
    strategy: SearchStrategy = "hybrid"
    fallback_used: bool = False
    model_used: str | None = None
    search_time_ms: float = 0.0
    generation_time_ms: float = 0.0
    total_time_ms: float = 0.0


# === QUERY LOG ===


class LogRecord(BaseModel):
    """Append-only record of one query execution. Written once per query."""

    model_config = ConfigDict(frozen=True)

    query_id: str
    fingerprint: str
    question_hash: str
    k: int
    min_similarity: float
    result_count: int
    timings_ms: dict[str, float] = Field(default_factory=dict)
    total_time_ms: float = 0.0
    model_used: str | None = None
    confidence: float = 0.0
    fallback_used: bool = False
    fallbacks: list[str] = Field(default_factory=list)
    strategy: SearchStrategy = "hybrid"
    status: ResultStatus = "answered"
    cache_hit: bool = False
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def compute_confidence(candidates: list[ScoredCandidate]) -> float:
    """Aggregate confidence: best hybrid score clamped to [0, 1]."""
    if not candidates:
        return 0.0
    top = max(c.hybrid_score for c in candidates)
    return max(0.0, min(1.0, top))
