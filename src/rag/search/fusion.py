# src/rag/search/fusion.py — v1
"""Weighted fusion of vector similarity and lexical rank.

    hybrid_score = vector_weight * cosine_similarity + lexical_weight * lexical_rank

lexical_rank is 0 for candidates without a lexical match and an unset
cosine similarity counts as 0. Weights are configuration, never computed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

DEFAULT_VECTOR_WEIGHT = 0.7
DEFAULT_LEXICAL_WEIGHT = 0.3
DEFAULT_OVERSAMPLE_FACTOR = 4
DEFAULT_OVERSAMPLE_MIN = 32


@dataclass(frozen=True)
class FusionWeights:
    """Fusion weights; must sum to 1."""

    vector: float = DEFAULT_VECTOR_WEIGHT
    lexical: float = DEFAULT_LEXICAL_WEIGHT

    def __post_init__(self) -> None:
        if self.vector < 0 or self.lexical < 0:
            raise ValueError("fusion weights must be non-negative")
        if abs(self.vector + self.lexical - 1.0) > 1e-9:
            raise ValueError("fusion weights must sum to 1.0")


@dataclass(frozen=True)
class FusedScore:
    """One candidate's fused scores."""

    id: str
    cosine_similarity: float | None
    lexical_rank: float
    hybrid_score: float


def hybrid_score(
    cosine_similarity: float | None,
    lexical_rank: float | None,
    weights: FusionWeights = FusionWeights(),
) -> float:
    """Deterministic fused score for one candidate."""
    cos = cosine_similarity if cosine_similarity is not None else 0.0
    lex = lexical_rank if lexical_rank is not None else 0.0
    return weights.vector * cos + weights.lexical * lex


def oversample_size(
    k: int,
    factor: int = DEFAULT_OVERSAMPLE_FACTOR,
    minimum: int = DEFAULT_OVERSAMPLE_MIN,
) -> int:
    """Number of vector neighbours fetched before filtering: max(factor * k, minimum)."""
    return max(factor * k, minimum)


def fuse(
    candidates: Iterable[tuple[str, float | None, float]],
    k: int,
    min_similarity: float,
    weights: FusionWeights = FusionWeights(),
) -> list[FusedScore]:
    """Score, filter and cut a candidate union.

    Args:
        candidates: (id, cosine_similarity, lexical_rank) for every member of
            the vector/lexical union. Duplicate ids keep the first occurrence.
        k: Number of results to keep.
        min_similarity: Candidates with cosine below this (or unset) are dropped.
        weights: Fusion weights.

    Returns:
        Up to k FusedScore sorted by hybrid score descending; ties broken by
        higher cosine, then by id for determinism.
    """
    seen: set[str] = set()
    fused: list[FusedScore] = []
    for cid, cos, lex in candidates:
        if cid in seen:
            continue
        seen.add(cid)
        if cos is None or cos < min_similarity:
            continue
        lex = max(0.0, lex or 0.0)
        fused.append(FusedScore(cid, cos, lex, hybrid_score(cos, lex, weights)))

    fused.sort(key=lambda f: (-f.hybrid_score, -(f.cosine_similarity or 0.0), f.id))
    return fused[: max(k, 0)]
