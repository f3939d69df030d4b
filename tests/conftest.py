# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides fake embedding and LLM providers, sample chunks, a recording
sleep for the retry executor and a ready-wired orchestrator factory.
No external dependencies — all I/O is faked.
"""

from __future__ import annotations

import math
from typing import Any

import pytest

from evidencerank.cache.memory_store import MemoryCacheStore
from evidencerank.core.models import Chunk, ScoredCandidate
from evidencerank.llm.base_client import BaseLLMClient
from evidencerank.llm.models import LLMResponse, Message
from evidencerank.llm.retry import RetryExecutor, RetryPolicy
from evidencerank.pipeline.orchestrator import QueryOrchestrator
from evidencerank.rag.embeddings.base_embedder import BaseEmbedder
from evidencerank.rag.generator import AnswerGenerator
from evidencerank.rag.reranker.mmr import MMRReranker
from evidencerank.rag.retriever.hybrid_retriever import HybridRetriever
from evidencerank.rag.search.memory_backend import InMemorySearchBackend
from evidencerank.tracking.query_log import InMemoryLogSink


# === FAKE PROVIDERS ===


class FakeEmbedder(BaseEmbedder):
    """Returns fixed vectors per question; raises for unknown text or on demand."""

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        default: list[float] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.vectors = vectors or {}
        self.default = default
        self.error = error
        self.calls: list[str] = []

    async def embed_query(self, query: str) -> list[float]:
        self.calls.append(query)
        if self.error is not None:
            raise self.error
        if query in self.vectors:
            return self.vectors[query]
        if self.default is not None:
            return self.default
        raise KeyError(query)

    @property
    def dimensions(self) -> int:
        return 2

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def model_name(self) -> str:
        return "fake-embed"


class FakeLLMClient(BaseLLMClient):
    """Echoes a canned answer and records every call."""

    def __init__(
        self,
        answer: str = "You can withdraw funds from the Wallet page.",
        model: str = "gpt-4o-mini",
        available_models: list[str] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.answer = answer
        self._model = model
        self.available_models = available_models if available_models is not None else [model]
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.list_calls = 0

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.2,
        model: str | None = None,
    ) -> LLMResponse:
        self.calls.append({"messages": messages, "system": system, "model": model})
        if self.error is not None:
            raise self.error
        return LLMResponse(
            content=self.answer, model=model or self._model, provider="fake"
        )

    async def list_models(self) -> list[str]:
        self.list_calls += 1
        return list(self.available_models)

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def model_name(self) -> str:
        return self._model


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# === HELPERS ===


def unit_vector(angle_cos: float) -> list[float]:
    """2-D unit vector whose cosine with [1, 0] equals angle_cos."""
    return [angle_cos, math.sqrt(max(0.0, 1.0 - angle_cos**2))]


def make_candidate(
    cid: str,
    hybrid: float,
    vector: list[float] | None = None,
    cosine: float | None = None,
    lexical: float = 0.0,
) -> ScoredCandidate:
    return ScoredCandidate(
        chunk=Chunk(id=cid, text=f"text of {cid}", vector=vector),
        cosine_similarity=cosine,
        lexical_rank=lexical,
        hybrid_score=hybrid,
    )


# === FIXTURES: Sample data ===


@pytest.fixture
def sample_chunks() -> list[Chunk]:
    """Small support knowledge base with 2-D vectors (query axis is [1, 0])."""
    return [
        Chunk(
            id="withdraw-1",
            parent_id="faq-withdraw",
            position_index=0,
            text="Как сделать вывод средств: откройте кошелёк и нажмите «Вывести».",
            vector=unit_vector(0.92),
        ),
        Chunk(
            id="withdraw-2",
            parent_id="faq-withdraw",
            position_index=1,
            text="Вывод средств занимает до трёх рабочих дней.",
            vector=unit_vector(0.81),
        ),
        Chunk(
            id="deposit-1",
            parent_id="faq-deposit",
            position_index=0,
            text="Пополнить счёт можно банковской картой.",
            vector=unit_vector(0.30),
        ),
        Chunk(
            id="kyc-1",
            parent_id="faq-kyc",
            position_index=0,
            text="Verification requires a passport scan.",
            vector=None,
        ),
    ]


@pytest.fixture
def memory_backend(sample_chunks: list[Chunk]) -> InMemorySearchBackend:
    return InMemorySearchBackend(sample_chunks)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_executor(recording_sleep: RecordingSleep) -> RetryExecutor:
    """Retry executor that never actually sleeps."""
    return RetryExecutor(sleep=recording_sleep)


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder(default=[1.0, 0.0])


@pytest.fixture
def log_sink() -> InMemoryLogSink:
    return InMemoryLogSink()


@pytest.fixture
def build_orchestrator(fast_executor, log_sink):
    """Factory wiring an orchestrator around fakes; override any part by keyword."""

    def _build(
        backend=None,
        embedder=None,
        llm=None,
        cache=None,
        fallback_model: str | None = "gpt-3.5-turbo",
        **kwargs,
    ) -> QueryOrchestrator:
        policy = RetryPolicy(max_attempts=3, base_delay_s=1.0, max_delay_s=30.0)
        retriever = HybridRetriever(
            backend=backend if backend is not None else InMemorySearchBackend([]),
            executor=fast_executor,
            policy=policy,
        )
        client = llm if llm is not None else FakeLLMClient()
        return QueryOrchestrator(
            cache=cache if cache is not None else MemoryCacheStore(),
            embedder=embedder if embedder is not None else FakeEmbedder(default=[1.0, 0.0]),
            retriever=retriever,
            reranker=MMRReranker(),
            generator=AnswerGenerator(client, fallback_model=fallback_model),
            executor=fast_executor,
            embedding_policy=policy,
            generation_policy=policy,
            model_list_policy=policy,
            log_sink=log_sink,
            **kwargs,
        )

    return _build
