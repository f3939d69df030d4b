# tests/integration/conftest.py — v8
"""Shared fixtures for integration tests.

The full pipeline is wired through the public facade from a JSONL corpus
on disk; only the embedding and LLM providers are replaced by fakes.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from evidencerank.config.settings import Settings
from tests.conftest import FakeEmbedder, FakeLLMClient


@pytest.fixture
def corpus_path(tmp_path: Path, sample_chunks) -> Path:
    path = tmp_path / "kb.jsonl"
    with path.open("w", encoding="utf-8") as f:
        for chunk in sample_chunks:
            f.write(json.dumps(chunk.model_dump(mode="json"), ensure_ascii=False) + "\n")
    return path


@pytest.fixture
def empty_corpus_path(tmp_path: Path) -> Path:
    path = tmp_path / "empty.jsonl"
    path.write_text("", encoding="utf-8")
    return path


@pytest.fixture
def query_log_path(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "queries.jsonl"


@pytest.fixture
def make_settings(query_log_path: Path):
    def _make(corpus: Path, **overrides) -> Settings:
        fields = dict(
            search_backend="memory",
            search_corpus_path=corpus,
            query_log_sink="jsonl",
            query_log_path=query_log_path,
            llm_fallback_model="",
        )
        fields.update(overrides)
        return Settings(_env_file=None, **fields)

    return _make


@pytest.fixture
def fake_providers():
    """Patch the provider factories used by build_orchestrator()."""
    embedder = FakeEmbedder(default=[1.0, 0.0])
    llm = FakeLLMClient()
    with patch(
        "evidencerank.rag.embeddings.embedder_factory.create_embedder",
        return_value=embedder,
    ), patch(
        "evidencerank.llm.client_factory.create_llm_client",
        return_value=llm,
    ):
        yield embedder, llm
