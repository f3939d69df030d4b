# src/rag/search/search_backend_factory.py — v2
"""Factory: instantiate the configured search backend."""

from __future__ import annotations

import logging

from evidencerank.config.settings import Settings
from evidencerank.rag.search.base_search_backend import BaseSearchBackend
from evidencerank.rag.search.fusion import FusionWeights

logger = logging.getLogger(__name__)


def create_search_backend(settings: Settings | None = None) -> BaseSearchBackend:
    """Instantiate the configured search backend.

    Args:
        settings: Application settings. Defaults to an empty in-memory corpus.

    Returns:
        Configured BaseSearchBackend implementation.
    """
    settings = settings or Settings()
    weights = FusionWeights(
        vector=settings.hybrid_vector_weight,
        lexical=settings.hybrid_lexical_weight,
    )
    oversampling = {
        "oversample_factor": settings.hybrid_oversample_factor,
        "oversample_min": settings.hybrid_oversample_min,
    }

    if settings.search_backend == "memory":
        from evidencerank.rag.search.memory_backend import InMemorySearchBackend

        if settings.search_corpus_path is None:
            logger.warning("SEARCH_CORPUS_PATH not set, in-memory corpus is empty")
            return InMemorySearchBackend([], weights=weights, **oversampling)
        return InMemorySearchBackend.from_jsonl(
            settings.search_corpus_path, weights=weights, **oversampling
        )

    if settings.search_backend == "supabase":
        from evidencerank.rag.search.supabase_backend import SupabaseSearchBackend

        return SupabaseSearchBackend(
            url=settings.supabase_url,
            api_key=settings.supabase_key,
            hybrid_rpc=settings.supabase_hybrid_rpc,
            lexical_rpc=settings.supabase_lexical_rpc,
            weights=weights,
            timeout_s=settings.timeout_for("retrieval"),
            **oversampling,
        )

    raise ValueError(f"Unsupported search backend: {settings.search_backend!r}")
