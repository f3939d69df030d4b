# tests/unit/rag/retriever/test_unit_hybrid_retriever.py — v2
"""Tests for rag/retriever/hybrid_retriever.py — normalization and fallback chain."""

from __future__ import annotations

from typing import Any

import pytest

from evidencerank.core.errors import RemoteUnavailable
from evidencerank.llm.retry import RetryPolicy
from evidencerank.rag.retriever.hybrid_retriever import HybridRetriever
from evidencerank.rag.search.base_search_backend import BaseSearchBackend


class ScriptedBackend(BaseSearchBackend):
    """Backend whose responses are queued per method; exceptions are raised."""

    def __init__(self, hybrid: list[Any] | None = None, lexical: list[Any] | None = None):
        self.hybrid_script = list(hybrid or [])
        self.lexical_script = list(lexical or [])
        self.hybrid_calls: list[float] = []
        self.lexical_calls = 0

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def hybrid_search(self, vector, text, k, min_similarity):
        self.hybrid_calls.append(min_similarity)
        return self._next(self.hybrid_script)

    async def lexical_search(self, text, k):
        self.lexical_calls += 1
        return self._next(self.lexical_script)

    @staticmethod
    def _next(script: list[Any]) -> Any:
        item = script.pop(0) if len(script) > 1 else (script[0] if script else [])
        if isinstance(item, Exception):
            raise item
        return item


def _row(cid: str, cos: float | None, lex: float = 0.0, **extra) -> dict[str, Any]:
    return {"id": cid, "text": f"text {cid}", "cosine_similarity": cos, "lexical_rank": lex, **extra}


@pytest.fixture
def make_retriever(fast_executor):
    def _make(backend: BaseSearchBackend) -> HybridRetriever:
        return HybridRetriever(
            backend, executor=fast_executor, policy=RetryPolicy(max_attempts=2)
        )

    return _make


class TestPrimaryPath:
    @pytest.mark.asyncio
    async def test_scenario_chunk_ranked_first(self, make_retriever):
        backend = ScriptedBackend(
            hybrid=[[_row("other", 0.60, 0.90), _row("withdraw", 0.92, 0.20)]]
        )
        outcome = await make_retriever(backend).search(
            [1.0, 0.0], "Как сделать вывод средств?", 5, 0.5
        )
        assert outcome.strategy == "hybrid"
        assert outcome.fallback_used is False
        assert outcome.candidates[0].id == "withdraw"
        assert outcome.candidates[0].hybrid_score == pytest.approx(0.704)

    @pytest.mark.asyncio
    async def test_hybrid_recomputed_from_weights(self, make_retriever):
        backend = ScriptedBackend(hybrid=[[_row("a", 0.8, 0.5, hybrid_score=0.99)]])
        outcome = await make_retriever(backend).search([1.0], "q", 5, 0.5)
        assert outcome.candidates[0].hybrid_score == pytest.approx(0.7 * 0.8 + 0.3 * 0.5)

    @pytest.mark.asyncio
    async def test_field_aliases(self, make_retriever):
        backend = ScriptedBackend(
            hybrid=[[{
                "chunk_id": "a",
                "content": "body",
                "similarity": "0.75",
                "ts_rank": 0.4,
                "embedding": "[0.6, 0.8]",
                "document_id": "doc",
                "chunk_index": 3,
            }]]
        )
        outcome = await make_retriever(backend).search([1.0], "q", 5, 0.5)
        c = outcome.candidates[0]
        assert (c.id, c.text, c.chunk.parent_id, c.chunk.position_index) == ("a", "body", "doc", 3)
        assert c.cosine_similarity == pytest.approx(0.75)
        assert c.vector == [0.6, 0.8]

    @pytest.mark.asyncio
    async def test_threshold_enforced_and_cut_to_k(self, make_retriever):
        rows = [_row("low", 0.4), _row("a", 0.9), _row("b", 0.8), _row("c", 0.7), _row("a", 0.1)]
        backend = ScriptedBackend(hybrid=[rows])
        outcome = await make_retriever(backend).search([1.0], "q", 2, 0.5)
        assert [c.id for c in outcome.candidates] == ["a", "b"]


class TestFallbackChain:
    @pytest.mark.asyncio
    async def test_hybrid_error_falls_back_to_lexical(self, make_retriever):
        backend = ScriptedBackend(
            hybrid=[RemoteUnavailable("down")],
            lexical=[[_row("lex", None, 1.0)]],
        )
        outcome = await make_retriever(backend).search([1.0], "q", 5, 0.5)
        assert [c.id for c in outcome.candidates] == ["lex"]
        assert outcome.fallback_used is True
        assert outcome.strategy == "lexical-fallback"
        assert outcome.fallbacks == ["hybrid_failed", "lexical"]
        assert outcome.candidates[0].hybrid_score == pytest.approx(0.3)
        # Retried per policy before falling back
        assert len(backend.hybrid_calls) == 2

    @pytest.mark.asyncio
    async def test_socket_timeout_falls_back_to_lexical(self, fast_executor):
        backend = ScriptedBackend(
            hybrid=[TimeoutError("read timed out")],
            lexical=[[_row("lex", None, 1.0)]],
        )
        retriever = HybridRetriever(backend, executor=fast_executor)
        outcome = await retriever.search([1.0], "q", 5, 0.5)
        assert [c.id for c in outcome.candidates] == ["lex"]
        assert outcome.fallbacks == ["hybrid_failed", "lexical"]
        assert len(backend.hybrid_calls) == 3

    @pytest.mark.asyncio
    async def test_hybrid_empty_falls_back_to_lexical(self, make_retriever):
        backend = ScriptedBackend(hybrid=[[]], lexical=[[_row("lex", None, 0.6)]])
        outcome = await make_retriever(backend).search([1.0], "q", 5, 0.5)
        assert outcome.candidates and outcome.fallback_used
        assert outcome.fallbacks[0] == "hybrid_empty"

    @pytest.mark.asyncio
    async def test_no_vector_goes_lexical(self, make_retriever):
        backend = ScriptedBackend(lexical=[[_row("lex", None, 0.6)]])
        outcome = await make_retriever(backend).search(None, "q", 5, 0.5)
        assert backend.hybrid_calls == []
        assert outcome.fallbacks == ["no_query_vector", "lexical"]

    @pytest.mark.asyncio
    async def test_relaxed_threshold_retry(self, make_retriever):
        backend = ScriptedBackend(
            hybrid=[[], [_row("weak", 0.3)]],
            lexical=[[]],
        )
        retriever = make_retriever(backend)
        outcome = await retriever.search([1.0], "q", 5, 0.5)
        assert backend.hybrid_calls == [0.5, 0.25]
        assert [c.id for c in outcome.candidates] == ["weak"]
        assert outcome.fallback_used is True
        assert outcome.strategy == "hybrid"
        assert outcome.effective_min_similarity == 0.25
        assert outcome.fallbacks == ["hybrid_empty", "lexical_empty", "relaxed_threshold"]

    @pytest.mark.asyncio
    async def test_everything_empty(self, make_retriever):
        backend = ScriptedBackend(hybrid=[[]], lexical=[[]])
        outcome = await make_retriever(backend).search([1.0], "q", 5, 0.5)
        assert outcome.candidates == []
        assert outcome.fallback_used is True
        assert outcome.fallbacks[-1] == "relaxed_empty"

    @pytest.mark.asyncio
    async def test_everything_failing_does_not_raise(self, make_retriever):
        down = RemoteUnavailable("down")
        backend = ScriptedBackend(hybrid=[down], lexical=[down])
        outcome = await make_retriever(backend).search([1.0], "q", 5, 0.5)
        assert outcome.candidates == []
        assert outcome.fallbacks == ["hybrid_failed", "lexical_failed", "relaxed_failed"]

    @pytest.mark.asyncio
    async def test_malformed_payload_falls_back(self, make_retriever):
        backend = ScriptedBackend(
            hybrid=[{"not": "a list"}], lexical=[[_row("lex", None, 0.5)]]
        )
        outcome = await make_retriever(backend).search([1.0], "q", 5, 0.5)
        assert outcome.fallbacks[0] == "hybrid_failed"
        assert [c.id for c in outcome.candidates] == ["lex"]


class TestRelaxedThreshold:
    def test_scaled(self, fast_executor):
        r = HybridRetriever(ScriptedBackend(), executor=fast_executor)
        assert r.relaxed_threshold(0.5) == 0.25

    def test_floor(self, fast_executor):
        r = HybridRetriever(ScriptedBackend(), executor=fast_executor)
        assert r.relaxed_threshold(0.15) == pytest.approx(0.1)

    def test_never_above_original(self, fast_executor):
        r = HybridRetriever(ScriptedBackend(), executor=fast_executor)
        assert r.relaxed_threshold(0.05) == pytest.approx(0.05)
