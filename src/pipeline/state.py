# src/pipeline/state.py — v2
"""Per-query pipeline state and the stage transition table.

One QueryState is created per invocation and never shared between
queries.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from pydantic import BaseModel, Field

from evidencerank.core.models import (
    Query,
    RankedResult,
    ResultStatus,
    RetrievalOutcome,
    ScoredCandidate,
)


class PipelineStage(str, Enum):
    CACHE_LOOKUP = "cache_lookup"
    EMBEDDING = "embedding"
    RETRIEVAL = "retrieval"
    RERANKING = "reranking"
    GENERATION = "generation"
    CACHE_WRITE = "cache_write"
    ERROR_FALLBACK = "error_fallback"
    DONE = "done"


ALLOWED_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    PipelineStage.CACHE_LOOKUP: frozenset({PipelineStage.DONE, PipelineStage.EMBEDDING}),
    PipelineStage.EMBEDDING: frozenset(
        {PipelineStage.RETRIEVAL, PipelineStage.ERROR_FALLBACK}
    ),
    PipelineStage.RETRIEVAL: frozenset(
        {PipelineStage.RERANKING, PipelineStage.ERROR_FALLBACK}
    ),
    PipelineStage.RERANKING: frozenset({PipelineStage.GENERATION}),
    PipelineStage.GENERATION: frozenset(
        {PipelineStage.CACHE_WRITE, PipelineStage.ERROR_FALLBACK}
    ),
    # From Embedding/Retrieval: lexical recovery then Generation.
    # From Generation: user-facing error result, straight to Done.
    PipelineStage.ERROR_FALLBACK: frozenset(
        {PipelineStage.GENERATION, PipelineStage.DONE}
    ),
    PipelineStage.CACHE_WRITE: frozenset({PipelineStage.DONE}),
    PipelineStage.DONE: frozenset(),
}

# Stages whose duration counts as search latency
SEARCH_STAGES = frozenset(
    {
        PipelineStage.EMBEDDING,
        PipelineStage.RETRIEVAL,
        PipelineStage.RERANKING,
        PipelineStage.ERROR_FALLBACK,
    }
)


class InvalidTransition(RuntimeError):
    """Raised when the orchestrator attempts an illegal stage change."""


class QueryState(BaseModel):
    """Mutable state of one pipeline invocation."""

    model_config = {"arbitrary_types_allowed": True}

    query: Query
    fingerprint: str
    query_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    stage: PipelineStage = PipelineStage.CACHE_LOOKUP
    history: list[PipelineStage] = Field(
        default_factory=lambda: [PipelineStage.CACHE_LOOKUP]
    )
    timings_ms: dict[str, float] = Field(default_factory=dict)
    started_at: float = Field(default_factory=time.perf_counter)

    cache_hit: bool = False
    vector: list[float] | None = None
    outcome: RetrievalOutcome | None = None
    reranked: list[ScoredCandidate] = Field(default_factory=list)
    answer: str = ""
    model_used: str | None = None
    status: ResultStatus = "answered"
    fallbacks: list[str] = Field(default_factory=list)
    error: str | None = None
    result: RankedResult | None = None

    def transition(self, target: PipelineStage) -> None:
        """Move to the next stage, enforcing the transition table."""
        if target not in ALLOWED_TRANSITIONS[self.stage]:
            raise InvalidTransition(f"{self.stage.value} -> {target.value}")
        self.stage = target
        self.history.append(target)

    @contextmanager
    def timed(self, stage: PipelineStage) -> Iterator[None]:
        """Accumulate wall time spent in a stage (ms)."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = (time.perf_counter() - start) * 1000.0
            self.timings_ms[stage.value] = self.timings_ms.get(stage.value, 0.0) + elapsed

    @property
    def candidates(self) -> list[ScoredCandidate]:
        return self.outcome.candidates if self.outcome else []

    @property
    def fallback_used(self) -> bool:
        return bool(self.fallbacks) or bool(self.outcome and self.outcome.fallback_used)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000.0

    def search_time_ms(self) -> float:
        return sum(self.timings_ms.get(s.value, 0.0) for s in SEARCH_STAGES)

    def generation_time_ms(self) -> float:
        return self.timings_ms.get(PipelineStage.GENERATION.value, 0.0)
