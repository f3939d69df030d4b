# src/api/models.py — v2
"""API-level models: QueryRequest, QueryOptions, QueryResponse.

Field names serialize in camelCase for the transport layer; Python code
uses the snake_case attribute names.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from evidencerank.core.models import ResultStatus, SearchStrategy


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueryOptions(_ApiModel):
    """Optional per-request retrieval overrides."""

    top_k: int | None = Field(default=None, ge=1, le=50)
    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)


class QueryRequest(_ApiModel):
    """Incoming question."""

    question: str = Field(min_length=1)
    options: QueryOptions | None = None


class SourceRecord(_ApiModel):
    """One knowledge-base fragment backing the answer."""

    id: str
    content: str
    score: float
    similarity: float | None = None
    hybrid_score: float


class ResponseMetadata(_ApiModel):
    search_strategy: SearchStrategy
    model_used: str | None = None
    fallback_used: bool = False
    status: ResultStatus = "answered"


class QueryResponse(_ApiModel):
    """Return value of facade.answer_question()."""

    answer: str
    sources: list[SourceRecord] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    search_time_ms: float = 0.0
    processing_time_ms: float = 0.0
    metadata: ResponseMetadata
    error: str | None = None

    def to_wire(self) -> dict:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
