# src/core/similarity.py — v3
"""Vector utilities: L2 normalization and cosine similarity.

Fusion scoring and MMR both assume unit-length vectors, so every
embedding passes through l2_normalize() before use.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)

_EPSILON = 1e-10


def l2_normalize(vector: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return the vector scaled to unit L2 norm.

    Raises:
        ValueError: If the vector is empty, not 1-D, contains non-finite
            components, or has zero norm.
    """
    arr = np.asarray(vector, dtype=np.float64)
    if arr.ndim != 1 or arr.size == 0:
        raise ValueError(f"Expected non-empty 1D vector, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("Vector contains non-finite components")
    norm = float(np.linalg.norm(arr))
    if norm < _EPSILON:
        raise ValueError("Cannot normalize a zero vector")
    return arr / norm


def cosine_similarity(
    a: Sequence[float] | np.ndarray | None,
    b: Sequence[float] | np.ndarray | None,
) -> float:
    """Cosine similarity between two vectors.

    Returns 0.0 when either vector is missing, empty, zero, or the
    dimensions disagree.
    """
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.size == 0 or vb.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom < _EPSILON:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_similarity_matrix(embeddings: np.ndarray) -> np.ndarray:
    """Compute pairwise cosine similarity matrix.

    Args:
        embeddings: 2D array of shape (n_samples, n_features).

    Returns:
        Similarity matrix of shape (n_samples, n_samples) with values in [-1, 1].

    Raises:
        ValueError: If embeddings is not a 2D array.
    """
    if embeddings.ndim != 2:
        raise ValueError(f"Expected 2D array, got {embeddings.ndim}D")
    if embeddings.shape[0] == 0:
        return np.empty((0, 0), dtype=np.float64)

    norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
    norms = np.maximum(norms, _EPSILON)
    normalized = embeddings / norms
    return normalized @ normalized.T


def cosine_to_many(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one query vector against each row of a matrix."""
    if matrix.ndim != 2 or matrix.shape[0] == 0:
        return np.empty((0,), dtype=np.float64)
    row_norms = np.maximum(np.linalg.norm(matrix, axis=1), _EPSILON)
    q_norm = max(float(np.linalg.norm(query)), _EPSILON)
    return (matrix @ query) / (row_norms * q_norm)
