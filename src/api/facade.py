# src/api/facade.py — v2
"""Public API facade — single entry point for answering questions.

Usage:
    from evidencerank.api.facade import answer_question, build_orchestrator
    orchestrator = build_orchestrator(settings)
    response = await answer_question(request, orchestrator, settings)
"""

from __future__ import annotations

import logging

from evidencerank.api.models import (
    QueryRequest,
    QueryResponse,
    ResponseMetadata,
    SourceRecord,
)
from evidencerank.config.settings import Settings
from evidencerank.core.models import Query, RankedResult
from evidencerank.pipeline.orchestrator import QueryOrchestrator

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings | None = None) -> QueryOrchestrator:
    """Wire the configured providers into a QueryOrchestrator.

    One orchestrator is meant to live for the whole process: the result
    cache and the resolved generation model are held by it.
    """
    from evidencerank.cache.cache_factory import create_cache_store
    from evidencerank.llm.client_factory import create_llm_client
    from evidencerank.llm.retry import RetryExecutor
    from evidencerank.rag.embeddings.embedder_factory import create_embedder
    from evidencerank.rag.generator import AnswerGenerator
    from evidencerank.rag.reranker.mmr import MMRReranker
    from evidencerank.rag.retriever.hybrid_retriever import HybridRetriever
    from evidencerank.rag.search.fusion import FusionWeights
    from evidencerank.rag.search.search_backend_factory import create_search_backend
    from evidencerank.tracking.query_log import create_log_sink

    settings = settings or Settings()
    executor = RetryExecutor()

    retriever = HybridRetriever(
        backend=create_search_backend(settings),
        executor=executor,
        policy=settings.retry_policy("retrieval"),
        weights=FusionWeights(
            vector=settings.hybrid_vector_weight,
            lexical=settings.hybrid_lexical_weight,
        ),
        relax_factor=settings.retrieval_relax_factor,
        min_similarity_floor=settings.retrieval_min_similarity_floor,
    )
    client = create_llm_client(settings)
    generator = AnswerGenerator(
        client,
        model=settings.llm_model,
        fallback_model=settings.llm_fallback_model or None,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
    )

    logger.info(
        "Building query pipeline: search=%s, embeddings=%s, llm=%s/%s",
        settings.search_backend, settings.embedding_provider,
        settings.llm_provider, settings.llm_model,
    )
    return QueryOrchestrator(
        cache=create_cache_store(settings),
        embedder=create_embedder(settings),
        retriever=retriever,
        reranker=MMRReranker(settings.mmr_lambda),
        generator=generator,
        executor=executor,
        embedding_policy=settings.retry_policy("embedding"),
        generation_policy=settings.retry_policy("generation"),
        model_list_policy=settings.retry_policy("model_list"),
        log_sink=create_log_sink(settings),
    )


def build_query(request: QueryRequest, settings: Settings | None = None) -> Query:
    """Apply request options over configured defaults."""
    settings = settings or Settings()
    options = request.options
    top_k = options.top_k if options else None
    min_similarity = options.min_similarity if options else None
    return Query(
        question=request.question,
        k=top_k if top_k is not None else settings.retrieval_top_k,
        min_similarity=(
            min_similarity if min_similarity is not None else settings.retrieval_min_similarity
        ),
    )


async def answer_question(
    request: QueryRequest,
    orchestrator: QueryOrchestrator,
    settings: Settings | None = None,
) -> QueryResponse:
    """Answer one question end-to-end.

    Args:
        request: Question and optional retrieval overrides.
        orchestrator: Shared pipeline instance (see build_orchestrator).
        settings: Defaults for top-k and min similarity. Loaded from .env if None.

    Returns:
        QueryResponse; provider failures surface as a structured response,
        never as an exception.
    """
    query = build_query(request, settings)
    result = await orchestrator.run(query)
    return to_response(result)


def to_response(result: RankedResult) -> QueryResponse:
    """Map a RankedResult onto the wire response."""
    sources = [
        SourceRecord(
            id=c.id,
            content=c.text,
            score=c.hybrid_score,
            similarity=c.cosine_similarity,
            hybrid_score=c.hybrid_score,
        )
        for c in result.candidates
    ]
    return QueryResponse(
        answer=result.answer,
        sources=sources,
        confidence=result.confidence,
        search_time_ms=round(result.search_time_ms, 3),
        processing_time_ms=round(result.total_time_ms, 3),
        metadata=ResponseMetadata(
            search_strategy=result.strategy,
            model_used=result.model_used,
            fallback_used=result.fallback_used,
            status=result.status,
        ),
        error=result.answer if result.status == "generation_failed" else None,
    )
