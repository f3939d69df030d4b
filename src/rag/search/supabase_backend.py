# src/rag/search/supabase_backend.py — v2
"""Supabase (PostgREST RPC) search backend.

The database functions own the pgvector and full-text indexes and apply
the fusion formula server-side; this class only ships parameters and
returns the rows. HTTP runs in a worker thread under a socket timeout.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from typing import Any

from evidencerank.core.errors import InvalidRequest, InvalidResponse, RemoteUnavailable
from evidencerank.rag.search.base_search_backend import BaseSearchBackend
from evidencerank.rag.search.fusion import (
    DEFAULT_OVERSAMPLE_FACTOR,
    DEFAULT_OVERSAMPLE_MIN,
    FusionWeights,
    oversample_size,
)

logger = logging.getLogger(__name__)


class SupabaseSearchBackend(BaseSearchBackend):
    """Calls `hybrid_search` / `lexical_search` SQL functions over PostgREST.

    Args:
        url: Project URL, e.g. https://xyz.supabase.co
        api_key: Service or anon key.
        hybrid_rpc: Name of the fused search function.
        lexical_rpc: Name of the lexical-only search function.
        weights: Fusion weights forwarded to the SQL function.
        timeout_s: Socket timeout for each HTTP request.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        hybrid_rpc: str = "hybrid_search",
        lexical_rpc: str = "lexical_search",
        weights: FusionWeights = FusionWeights(),
        oversample_factor: int = DEFAULT_OVERSAMPLE_FACTOR,
        oversample_min: int = DEFAULT_OVERSAMPLE_MIN,
        timeout_s: float = 20.0,
    ) -> None:
        self._base_url = url.rstrip("/")
        self._api_key = api_key
        self._hybrid_rpc = hybrid_rpc
        self._lexical_rpc = lexical_rpc
        self._weights = weights
        self._oversample_factor = oversample_factor
        self._oversample_min = oversample_min
        self._timeout_s = timeout_s

    @property
    def provider_name(self) -> str:
        return "supabase"

    async def hybrid_search(
        self,
        vector: list[float],
        text: str,
        k: int,
        min_similarity: float,
    ) -> list[dict[str, Any]]:
        payload = {
            "query_embedding": list(vector),
            "query_text": text,
            "match_count": k,
            "min_similarity": min_similarity,
            "vector_weight": self._weights.vector,
            "lexical_weight": self._weights.lexical,
            "candidate_count": oversample_size(
                k, self._oversample_factor, self._oversample_min
            ),
        }
        return await asyncio.to_thread(self._call_rpc, self._hybrid_rpc, payload)

    async def lexical_search(self, text: str, k: int) -> list[dict[str, Any]]:
        payload = {"query_text": text, "match_count": k}
        return await asyncio.to_thread(self._call_rpc, self._lexical_rpc, payload)

    def _call_rpc(self, function: str, payload: dict[str, Any]) -> list[dict[str, Any]]:
        """POST /rest/v1/rpc/<function> and return the decoded rows."""
        url = f"{self._base_url}/rest/v1/rpc/{function}"
        req = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "apikey": self._api_key,
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout_s) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:200]
            if 400 <= e.code < 500 and e.code != 429:
                raise InvalidRequest(f"RPC {function} rejected ({e.code}): {detail}") from e
            raise RemoteUnavailable(f"RPC {function} failed ({e.code}): {detail}") from e
        except urllib.error.URLError as e:
            raise RemoteUnavailable(f"Supabase unreachable: {e.reason}") from e

        try:
            rows = json.loads(body) if body else []
        except json.JSONDecodeError as e:
            raise InvalidResponse(f"RPC {function} returned invalid JSON") from e
        if not isinstance(rows, list):
            raise InvalidResponse(f"RPC {function} returned {type(rows).__name__}, expected list")
        logger.debug("RPC %s returned %d rows", function, len(rows))
        return rows
