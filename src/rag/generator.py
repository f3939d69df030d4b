# src/rag/generator.py — v1
"""Answer generation from retrieved fragments.

Wraps a BaseLLMClient: builds the grounded prompt from the question and
context fragments, and resolves which model to call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from evidencerank.core.errors import InvalidResponse, RetryExhausted
from evidencerank.llm.base_client import BaseLLMClient
from evidencerank.llm.models import GenerationResult, Message
from evidencerank.llm.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You answer questions using only the numbered context fragments provided. "
    "If the fragments do not contain the answer, say so plainly. "
    "Answer in the language of the question."
)


def build_messages(question: str, context_fragments: Sequence[str]) -> list[Message]:
    """Single user message: numbered fragments followed by the question."""
    blocks = [f"[{i}] {fragment.strip()}" for i, fragment in enumerate(context_fragments, 1)]
    context = "\n\n".join(blocks) if blocks else "(no context)"
    return [
        Message(role="user", content=f"Context:\n{context}\n\nQuestion: {question.strip()}")
    ]


class AnswerGenerator:
    """Generation collaborator: {question, context_fragments} -> answer text.

    Args:
        client: LLM client.
        model: Preferred model; defaults to the client's model.
        fallback_model: Used when the preferred model is not listed by the provider.
        max_tokens: Completion budget.
        temperature: Sampling temperature.
    """

    def __init__(
        self,
        client: BaseLLMClient,
        model: str | None = None,
        fallback_model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> None:
        self._client = client
        self._model = model or client.model_name
        self._fallback_model = fallback_model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._resolved_model: str | None = None
        self._resolve_lock = asyncio.Lock()

    @property
    def model(self) -> str:
        """Model used for generation (resolved model once known)."""
        return self._resolved_model or self._model

    async def generate(
        self,
        question: str,
        context_fragments: Sequence[str],
        model: str | None = None,
    ) -> GenerationResult:
        """Produce an answer grounded in the fragments.

        Raises:
            InvalidResponse: The provider returned an empty answer.
        """
        used_model = model or self.model
        response = await self._client.complete(
            build_messages(question, context_fragments),
            system=SYSTEM_PROMPT,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            model=used_model,
        )
        answer = response.content.strip()
        if not answer:
            raise InvalidResponse(f"Model {used_model} returned an empty answer")
        return GenerationResult(answer_text=answer, model=response.model or used_model)

    async def resolve_model(self, executor: RetryExecutor, policy: RetryPolicy) -> str:
        """Check the preferred model against the provider's model list, once.

        Switches to the fallback model only when the list was fetched, lacks
        the preferred model and contains the fallback. Any failure keeps the
        preferred model.
        """
        if self._resolved_model is not None:
            return self._resolved_model
        async with self._resolve_lock:
            if self._resolved_model is not None:
                return self._resolved_model
            resolved = self._model
            try:
                available = await executor.execute(
                    self._client.list_models, policy, name="list_models"
                )
            except RetryExhausted as e:
                logger.warning("Model list unavailable, keeping %s: %s", self._model, e)
            else:
                if (
                    self._model not in available
                    and self._fallback_model
                    and self._fallback_model in available
                ):
                    logger.warning(
                        "Model %s not available, using fallback %s",
                        self._model, self._fallback_model,
                    )
                    resolved = self._fallback_model
            self._resolved_model = resolved
            return resolved
