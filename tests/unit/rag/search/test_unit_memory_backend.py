# tests/unit/rag/search/test_unit_memory_backend.py — v1
"""Tests for rag/search/memory_backend.py."""

from __future__ import annotations

import json

import pytest

from evidencerank.core.errors import InvalidRequest
from evidencerank.core.models import Chunk
from evidencerank.rag.search.memory_backend import InMemorySearchBackend, tokenize
from tests.conftest import unit_vector


class TestTokenize:
    def test_unicode_words(self):
        assert tokenize("Как сделать ВЫВОД средств?") == ["как", "сделать", "вывод", "средств"]


class TestHybridSearch:
    @pytest.mark.asyncio
    async def test_hybrid_formula_holds(self, memory_backend):
        records = await memory_backend.hybrid_search([1.0, 0.0], "вывод средств", 5, 0.5)
        assert records
        for r in records:
            expected = 0.7 * r["cosine_similarity"] + 0.3 * r["lexical_rank"]
            assert r["hybrid_score"] == pytest.approx(expected)

    @pytest.mark.asyncio
    async def test_threshold_and_order(self, memory_backend):
        records = await memory_backend.hybrid_search(
            [1.0, 0.0], "Как сделать вывод средств?", 5, 0.5
        )
        ids = [r["id"] for r in records]
        # deposit-1 (cos 0.30) is below threshold; kyc-1 has no vector
        assert ids == ["withdraw-1", "withdraw-2"]
        assert records[0]["cosine_similarity"] == pytest.approx(0.92)
        assert records[0]["lexical_rank"] == pytest.approx(1.0)
        scores = [r["hybrid_score"] for r in records]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_query_vector_normalized(self, memory_backend):
        a = await memory_backend.hybrid_search([1.0, 0.0], "x", 5, 0.5)
        b = await memory_backend.hybrid_search([10.0, 0.0], "x", 5, 0.5)
        assert [r["cosine_similarity"] for r in a] == pytest.approx(
            [r["cosine_similarity"] for r in b]
        )

    @pytest.mark.asyncio
    async def test_k_limits_results(self, memory_backend):
        records = await memory_backend.hybrid_search([1.0, 0.0], "вывод", 1, 0.0)
        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self, memory_backend):
        with pytest.raises(InvalidRequest):
            await memory_backend.hybrid_search([1.0, 0.0, 0.0], "вывод", 5, 0.5)

    @pytest.mark.asyncio
    async def test_oversampling_bounds_vector_candidates(self):
        chunks = [
            Chunk(id=f"c{i}", text=f"filler {i}", vector=unit_vector(0.99 - i * 0.01))
            for i in range(10)
        ]
        backend = InMemorySearchBackend(chunks, oversample_factor=1, oversample_min=2)
        records = await backend.hybrid_search([1.0, 0.0], "nothing matches", 5, 0.0)
        # Only max(1 * 5, 2) nearest vectors enter the union
        assert [r["id"] for r in records] == ["c0", "c1", "c2", "c3", "c4"]

    @pytest.mark.asyncio
    async def test_lexical_match_joins_union(self):
        chunks = [
            Chunk(id="near", text="unrelated words", vector=unit_vector(0.95)),
            Chunk(id="lexical", text="refund policy", vector=unit_vector(0.60)),
        ]
        backend = InMemorySearchBackend(chunks, oversample_factor=1, oversample_min=1)
        records = await backend.hybrid_search([1.0, 0.0], "refund", 1, 0.5)
        # 0.7*0.60 + 0.3*1.0 = 0.72 beats 0.7*0.95 = 0.665
        assert records[0]["id"] == "lexical"

    @pytest.mark.asyncio
    async def test_empty_corpus(self):
        backend = InMemorySearchBackend([])
        assert await backend.hybrid_search([1.0, 0.0], "вывод", 5, 0.5) == []
        assert await backend.lexical_search("вывод", 5) == []


class TestLexicalSearch:
    @pytest.mark.asyncio
    async def test_only_token_matches(self, memory_backend):
        records = await memory_backend.lexical_search("passport", 5)
        assert [r["id"] for r in records] == ["kyc-1"]
        assert records[0]["cosine_similarity"] is None
        assert records[0]["lexical_rank"] == pytest.approx(1.0)
        assert records[0]["hybrid_score"] == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_ranks_normalized(self, memory_backend):
        records = await memory_backend.lexical_search("вывод средств", 5)
        assert {r["id"] for r in records} == {"withdraw-1", "withdraw-2"}
        assert max(r["lexical_rank"] for r in records) == pytest.approx(1.0)
        assert all(0.0 < r["lexical_rank"] <= 1.0 for r in records)

    @pytest.mark.asyncio
    async def test_no_match(self, memory_backend):
        assert await memory_backend.lexical_search("bitcoin", 5) == []


class TestLoading:
    def test_from_jsonl(self, tmp_path, sample_chunks):
        path = tmp_path / "corpus.jsonl"
        lines = [json.dumps(c.model_dump(), ensure_ascii=False) for c in sample_chunks]
        path.write_text("\n".join(lines) + "\n\n", encoding="utf-8")
        backend = InMemorySearchBackend.from_jsonl(path)
        assert len(backend) == len(sample_chunks)

    def test_from_jsonl_reports_line(self, tmp_path):
        path = tmp_path / "corpus.jsonl"
        path.write_text('{"id": "a", "text": "ok"}\n{"id": "b"}\n', encoding="utf-8")
        with pytest.raises(ValueError, match=":2:"):
            InMemorySearchBackend.from_jsonl(path)

    def test_mixed_dimensions_rejected(self):
        with pytest.raises(ValueError, match="mixed dimensions"):
            InMemorySearchBackend(
                [
                    Chunk(id="a", text="a", vector=[1.0, 0.0]),
                    Chunk(id="b", text="b", vector=[1.0, 0.0, 0.0]),
                ]
            )

    def test_zero_vector_skipped(self):
        backend = InMemorySearchBackend([Chunk(id="a", text="a", vector=[0.0, 0.0])])
        assert len(backend) == 1
