# src/cache/fingerprint.py — v4
"""Query fingerprinting for cache addressing.

The fingerprint is a SHA-256 over the normalized question text, k and
the minimum similarity threshold, plus the MMR lambda when a query
overrides it. Two logically identical queries always map to the same
key; distinct queries collide only with negligible probability.
"""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata

from evidencerank.core.models import Query


def normalize_question(text: str) -> str:
    """Normalize question text: NFKC, casefold, collapse whitespace.

    Punctuation is kept; "withdraw?" and "withdraw" are different questions
    only in tone, but stripping it would merge e.g. "C++" with "C".
    """
    text = unicodedata.normalize("NFKC", text)
    text = text.casefold()
    text = re.sub(r"\s+", " ", text).strip()
    return text


def compute_fingerprint(query: Query) -> str:
    """Compute the cache fingerprint of a query.

    Args:
        query: The query to fingerprint.

    Returns:
        64-char hex digest.
    """
    fields: dict[str, object] = {
        "q": normalize_question(query.question),
        "k": query.k,
        # repr() round-trips floats exactly, so 0.5 and 0.50 agree
        "min_similarity": repr(float(query.min_similarity)),
    }
    # Only overrides that are set join the key
    if query.mmr_lambda is not None:
        fields["mmr_lambda"] = repr(float(query.mmr_lambda))
    payload = json.dumps(
        fields,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def question_hash(text: str) -> str:
    """SHA-256 of the normalized question alone (for query logs)."""
    return hashlib.sha256(normalize_question(text).encode("utf-8")).hexdigest()
