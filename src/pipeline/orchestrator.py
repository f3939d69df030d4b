# src/pipeline/orchestrator.py — v2
"""Query pipeline orchestrator.

Drives one question through the stage machine:

  CacheLookup → Embedding → Retrieval → Reranking → Generation → CacheWrite → Done

with ErrorFallback reachable from Embedding, Retrieval and Generation.
All collaborators are injected; the cache is the only state shared
between concurrent queries. Exactly one LogRecord is emitted per
completed query, whatever path it took.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import numpy as np

from evidencerank.cache.fingerprint import compute_fingerprint, question_hash
from evidencerank.core.errors import (
    GenerationFailed,
    InvalidResponse,
    NoCandidates,
    PipelineError,
    RetryExhausted,
)
from evidencerank.core.models import LogRecord, Query, RankedResult, compute_confidence
from evidencerank.core.similarity import l2_normalize
from evidencerank.llm.retry import RetryExecutor, RetryPolicy
from evidencerank.logging.context import clear_context, set_query_context, set_stage_context
from evidencerank.pipeline.state import PipelineStage, QueryState
from evidencerank.tracking.query_log import NullLogSink, emit_log_record

if TYPE_CHECKING:
    from evidencerank.cache.base_cache_store import BaseCacheStore
    from evidencerank.rag.embeddings.base_embedder import BaseEmbedder
    from evidencerank.rag.generator import AnswerGenerator
    from evidencerank.rag.reranker.mmr import MMRReranker
    from evidencerank.rag.retriever.hybrid_retriever import HybridRetriever
    from evidencerank.tracking.query_log import BaseLogSink

logger = logging.getLogger(__name__)

NO_KNOWLEDGE_ANSWER = (
    "I could not find anything in the knowledge base that answers this question. "
    "Try rephrasing it or contact support."
)
GENERATION_ERROR_ANSWER = (
    "The answer service is temporarily unavailable. Please try again in a moment."
)


class QueryOrchestrator:
    """Sequences cache, embedding, retrieval, reranking and generation.

    Args:
        cache: Process-wide result cache.
        embedder: Embedding provider.
        retriever: Hybrid retriever (owns its own search fallbacks).
        reranker: MMR reranker.
        generator: Answer generator.
        executor: Retry executor for embedding and generation calls.
        embedding_policy: Retry policy for embedding calls.
        generation_policy: Retry policy for generation calls.
        model_list_policy: Retry policy for model list lookups.
        log_sink: Query log destination.
    """

    def __init__(
        self,
        cache: BaseCacheStore,
        embedder: BaseEmbedder,
        retriever: HybridRetriever,
        reranker: MMRReranker,
        generator: AnswerGenerator,
        executor: RetryExecutor | None = None,
        embedding_policy: RetryPolicy | None = None,
        generation_policy: RetryPolicy | None = None,
        model_list_policy: RetryPolicy | None = None,
        log_sink: BaseLogSink | None = None,
    ) -> None:
        self._cache = cache
        self._embedder = embedder
        self._retriever = retriever
        self._reranker = reranker
        self._generator = generator
        self._executor = executor or RetryExecutor()
        self._embedding_policy = embedding_policy or RetryPolicy(timeout_s=20.0)
        self._generation_policy = generation_policy or RetryPolicy(timeout_s=30.0)
        self._model_list_policy = model_list_policy or RetryPolicy(timeout_s=10.0)
        self._log_sink = log_sink or NullLogSink()

    async def run(self, query: Query) -> RankedResult:
        """Answer one query. Never raises for provider failures.

        Caller cancellation propagates as asyncio.CancelledError and aborts
        only this query.
        """
        state = QueryState(query=query, fingerprint=compute_fingerprint(query))
        set_query_context(state.query_id, state.fingerprint)
        try:
            result = await self._execute(state)
            state.result = result
            await emit_log_record(self._log_sink, self._build_log_record(state))
            return result
        finally:
            clear_context()

    # ------------------------------------------------------------------
    # Stage machine
    # ------------------------------------------------------------------

    async def _execute(self, state: QueryState) -> RankedResult:
        query = state.query

        set_stage_context(PipelineStage.CACHE_LOOKUP.value)
        with state.timed(PipelineStage.CACHE_LOOKUP):
            cached = await self._cache.get(state.fingerprint)
        if cached is not None:
            logger.info("Cache hit for query %s", state.query_id)
            state.cache_hit = True
            state.status = cached.status
            state.model_used = cached.model_used
            state.transition(PipelineStage.DONE)
            return cached

        self._enter(state, PipelineStage.EMBEDDING)
        vector_ok = await self._embed(state)

        if vector_ok:
            self._enter(state, PipelineStage.RETRIEVAL)
            retrieved = await self._retrieve(state)
        else:
            retrieved = False

        if retrieved:
            self._enter(state, PipelineStage.RERANKING)
            with state.timed(PipelineStage.RERANKING):
                state.reranked = self._reranker.rerank(
                    state.candidates, query.k, query.mmr_lambda
                )
        else:
            self._enter(state, PipelineStage.ERROR_FALLBACK)
            await self._lexical_recovery(state)

        self._enter(state, PipelineStage.GENERATION)
        try:
            await self._generate(state)
        except NoCandidates as e:
            logger.info("%s, returning explanatory answer", e)
            state.status = "no_candidates"
            state.answer = NO_KNOWLEDGE_ANSWER
        except GenerationFailed as e:
            logger.error("Generation failed: %s", e)
            state.status = "generation_failed"
            state.answer = GENERATION_ERROR_ANSWER
            state.error = str(e)
            self._enter(state, PipelineStage.ERROR_FALLBACK)
            result = self._build_result(state)
            state.transition(PipelineStage.DONE)
            return result

        result = self._build_result(state)
        self._enter(state, PipelineStage.CACHE_WRITE)
        with state.timed(PipelineStage.CACHE_WRITE):
            await self._cache.put(state.fingerprint, result)
        state.transition(PipelineStage.DONE)
        return result

    def _enter(self, state: QueryState, stage: PipelineStage) -> None:
        state.transition(stage)
        set_stage_context(stage.value)
        logger.debug("Entering stage %s", stage.value)

    async def _embed(self, state: QueryState) -> bool:
        """Embedding stage. Returns False when the pipeline must fall back."""
        with state.timed(PipelineStage.EMBEDDING):
            try:
                raw = await self._executor.execute(
                    lambda: self._embedder.embed_query(state.query.question),
                    self._embedding_policy,
                    name="embedding",
                )
                state.vector = _normalize_embedding(raw).tolist()
            except (RetryExhausted, InvalidResponse) as e:
                logger.warning("Embedding failed, using lexical fallback: %s", e)
                state.fallbacks.append("embedding_failed")
                return False
        return True

    async def _retrieve(self, state: QueryState) -> bool:
        """Retrieval stage. Returns False on an unrecoverable retriever error."""
        query = state.query
        with state.timed(PipelineStage.RETRIEVAL):
            try:
                state.outcome = await self._retriever.search(
                    state.vector, query.question, query.k, query.min_similarity
                )
            except PipelineError as e:
                logger.warning("Retrieval failed, using lexical fallback: %s", e)
                state.fallbacks.append("retrieval_failed")
                return False
        state.fallbacks.extend(state.outcome.fallbacks)
        return True

    async def _lexical_recovery(self, state: QueryState) -> None:
        """ErrorFallback after Embedding/Retrieval: lexical-only, no vector scoring."""
        query = state.query
        with state.timed(PipelineStage.ERROR_FALLBACK):
            state.outcome = await self._retriever.search(
                None, query.question, query.k, query.min_similarity
            )
        state.outcome.fallback_used = True
        state.fallbacks.extend(f for f in state.outcome.fallbacks if f not in state.fallbacks)
        state.reranked = list(state.outcome.candidates)

    async def _generate(self, state: QueryState) -> None:
        """Generation stage.

        Raises:
            NoCandidates: Nothing to ground an answer in; the model is not called.
            GenerationFailed: Generation retries were exhausted.
        """
        query = state.query
        with state.timed(PipelineStage.GENERATION):
            if not state.reranked:
                raise NoCandidates(f"No candidates for query {state.query_id}")

            model = await self._generator.resolve_model(
                self._executor, self._model_list_policy
            )
            state.model_used = model
            fragments = [c.text for c in state.reranked]
            try:
                generation = await self._executor.execute(
                    lambda: self._generator.generate(query.question, fragments, model=model),
                    self._generation_policy,
                    name="generation",
                )
            except RetryExhausted as e:
                raise GenerationFailed(str(e)) from e

        state.answer = generation.answer_text
        state.model_used = generation.model
        state.status = "answered"

    # ------------------------------------------------------------------
    # Results and telemetry
    # ------------------------------------------------------------------

    def _build_result(self, state: QueryState) -> RankedResult:
        outcome = state.outcome
        return RankedResult(
            candidates=list(state.reranked),
            confidence=compute_confidence(state.reranked),
            answer=state.answer,
            status=state.status,
            strategy=outcome.strategy if outcome else "lexical-fallback",
            fallback_used=state.fallback_used,
            model_used=state.model_used,
            search_time_ms=state.search_time_ms(),
            generation_time_ms=state.generation_time_ms(),
            total_time_ms=state.elapsed_ms(),
        )

    def _build_log_record(self, state: QueryState) -> LogRecord:
        result = state.result
        query = state.query
        return LogRecord(
            query_id=state.query_id,
            fingerprint=state.fingerprint,
            question_hash=question_hash(query.question),
            k=query.k,
            min_similarity=query.min_similarity,
            result_count=len(result.candidates) if result else 0,
            timings_ms=dict(state.timings_ms),
            total_time_ms=state.elapsed_ms(),
            model_used=state.model_used,
            confidence=result.confidence if result else 0.0,
            fallback_used=result.fallback_used if result else state.fallback_used,
            fallbacks=list(state.fallbacks),
            strategy=result.strategy if result else "hybrid",
            status=state.status,
            cache_hit=state.cache_hit,
            error=state.error,
        )


def _normalize_embedding(raw: object) -> np.ndarray:
    """L2-normalize a provider vector, mapping bad payloads to InvalidResponse."""
    try:
        return l2_normalize(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise InvalidResponse(f"Unusable embedding: {e}") from e


async def run_many(orchestrator: QueryOrchestrator, queries: list[Query]) -> list[RankedResult]:
    """Run independent queries concurrently."""
    return list(await asyncio.gather(*(orchestrator.run(q) for q in queries)))
