# src/rag/reranker/mmr.py — v1
"""Maximal Marginal Relevance reranking.

Greedy selection maximizing

    lambda * relevance(c) - (1 - lambda) * max_{s in S} similarity(c, s)

where relevance is the hybrid score and similarity is the cosine between
the two chunks' stored vectors (0 when either vector is missing). Ties go
to the higher relevance, then to the earlier input position.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from evidencerank.core.models import ScoredCandidate
from evidencerank.core.similarity import cosine_similarity_matrix

logger = logging.getLogger(__name__)

DEFAULT_LAMBDA = 0.75


def pairwise_similarity(candidates: Sequence[ScoredCandidate]) -> np.ndarray:
    """n x n cosine matrix between candidate vectors.

    Rows for candidates without a vector, or whose vector dimension differs
    from the majority, are all zero.
    """
    n = len(candidates)
    sims = np.zeros((n, n), dtype=np.float64)
    with_vectors = [i for i, c in enumerate(candidates) if c.vector]
    if len(with_vectors) < 2:
        return sims

    dims = [len(candidates[i].vector or []) for i in with_vectors]
    dim = max(set(dims), key=dims.count)
    rows = [i for i in with_vectors if len(candidates[i].vector or []) == dim]
    if len(rows) < 2:
        return sims

    matrix = np.array([candidates[i].vector for i in rows], dtype=np.float64)
    sub = cosine_similarity_matrix(matrix)
    idx = np.array(rows)
    sims[np.ix_(idx, idx)] = sub
    return sims


def mmr_rerank(
    candidates: Sequence[ScoredCandidate],
    k: int,
    lambda_: float = DEFAULT_LAMBDA,
) -> list[ScoredCandidate]:
    """Reorder candidates balancing relevance against redundancy.

    Args:
        candidates: Scored candidates in retrieval order.
        k: Number to select; min(k, len(candidates)) are returned.
        lambda_: Relevance weight in [0, 1]. 1.0 is pure relevance ranking.

    Returns:
        Selected candidates in selection order, no duplicates.
    """
    if not 0.0 <= lambda_ <= 1.0:
        raise ValueError(f"lambda must be within [0, 1], got {lambda_}")
    if k <= 0 or not candidates:
        return []
    if len(candidates) == 1:
        return list(candidates)

    n = len(candidates)
    relevance = [c.hybrid_score for c in candidates]
    diversity_weight = 1.0 - lambda_
    sims = pairwise_similarity(candidates) if diversity_weight > 0 else None

    # Max similarity of each candidate to the selected set; 0 while S is empty
    max_sim = np.zeros(n, dtype=np.float64)
    remaining = list(range(n))
    selected: list[int] = []

    while remaining and len(selected) < k:
        best = remaining[0]
        best_key = _marginal(relevance[best], max_sim[best], lambda_, diversity_weight)
        for i in remaining[1:]:
            key = _marginal(relevance[i], max_sim[i], lambda_, diversity_weight)
            # Strict comparison keeps the earlier index on full ties
            if key > best_key:
                best, best_key = i, key

        selected.append(best)
        remaining.remove(best)
        if sims is not None:
            np.maximum(max_sim, sims[best], out=max_sim)

    logger.debug("MMR selected %d of %d candidates (lambda=%.2f)", len(selected), n, lambda_)
    return [candidates[i] for i in selected]


def _marginal(
    relevance: float,
    max_sim: float,
    lambda_: float,
    diversity_weight: float,
) -> tuple[float, float]:
    """Sort key: marginal score, then raw relevance."""
    if diversity_weight == 0:
        return (relevance, relevance)
    return (lambda_ * relevance - diversity_weight * float(max_sim), relevance)


class MMRReranker:
    """Stateless MMR reranker with a configured default lambda."""

    def __init__(self, default_lambda: float = DEFAULT_LAMBDA) -> None:
        if not 0.0 <= default_lambda <= 1.0:
            raise ValueError(f"lambda must be within [0, 1], got {default_lambda}")
        self._default_lambda = default_lambda

    @property
    def default_lambda(self) -> float:
        return self._default_lambda

    def rerank(
        self,
        candidates: Sequence[ScoredCandidate],
        k: int,
        lambda_: float | None = None,
    ) -> list[ScoredCandidate]:
        return mmr_rerank(
            candidates, k, self._default_lambda if lambda_ is None else lambda_
        )
