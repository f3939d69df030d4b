# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for fusion weights, reranking, cache TTL,
retry/timeout policy, provider selection and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from evidencerank.llm.retry import RetryPolicy


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


RemoteOperation = Literal["embedding", "retrieval", "generation", "model_list"]


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Providers ===
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_fallback_model: str = "gpt-3.5-turbo"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 1024
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_ollama_model: str = "nomic-embed-text"
    ollama_base_url: str = "http://localhost:11434"

    # === Search backend ===
    search_backend: Literal["memory", "supabase"] = "memory"
    search_corpus_path: Path | None = None
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_hybrid_rpc: str = "hybrid_search"
    supabase_lexical_rpc: str = "lexical_search"

    # === Hybrid retrieval ===
    # hybrid_score = vector_weight * cosine + lexical_weight * lexical_rank
    hybrid_vector_weight: float = 0.7
    hybrid_lexical_weight: float = 0.3
    # Vector candidates fetched before filtering: max(factor * k, min)
    hybrid_oversample_factor: int = 4
    hybrid_oversample_min: int = 32
    retrieval_top_k: int = 5
    retrieval_min_similarity: float = 0.5
    retrieval_relax_factor: float = 0.5
    retrieval_min_similarity_floor: float = 0.1

    # === Reranking ===
    mmr_lambda: float = 0.75

    # === Cache ===
    cache_enabled: bool = True
    cache_backend: Literal["memory", "none"] = "memory"
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 1024

    # === Retry / timeouts ===
    retry_max_attempts: int = 3
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 30.0
    embedding_timeout_s: float = 20.0
    retrieval_timeout_s: float = 20.0
    generation_timeout_s: float = 30.0
    model_list_timeout_s: float = 10.0

    # === Query log ===
    query_log_sink: Literal["none", "memory", "jsonl"] = "jsonl"
    query_log_path: Path = Path("~/.evidencerank/logs/queries.jsonl")

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("mmr_lambda")
    @classmethod
    def validate_mmr_lambda(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("mmr_lambda must be within [0, 1]")
        return v

    @field_validator("retry_max_attempts", "retrieval_top_k", "hybrid_oversample_factor")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if abs(self.hybrid_vector_weight + self.hybrid_lexical_weight - 1.0) > 1e-9:
            errors.append("HYBRID_VECTOR_WEIGHT + HYBRID_LEXICAL_WEIGHT must equal 1.0")

        if self.retrieval_min_similarity_floor > self.retrieval_min_similarity:
            errors.append(
                "RETRIEVAL_MIN_SIMILARITY_FLOOR must be <= RETRIEVAL_MIN_SIMILARITY"
            )

        if not 0.0 < self.retrieval_relax_factor < 1.0:
            errors.append("RETRIEVAL_RELAX_FACTOR must be within (0, 1)")

        if self.retry_max_delay_s < self.retry_base_delay_s:
            errors.append("RETRY_MAX_DELAY_S must be >= RETRY_BASE_DELAY_S")

        if self.cache_ttl_seconds <= 0:
            errors.append("CACHE_TTL_SECONDS must be > 0")

        if self.search_backend == "supabase" and not (
            self.supabase_url and self.supabase_key
        ):
            errors.append("SEARCH_BACKEND=supabase requires SUPABASE_URL and SUPABASE_KEY")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    def timeout_for(self, operation: RemoteOperation) -> float:
        """Per-attempt timeout in seconds for a remote operation."""
        return {
            "embedding": self.embedding_timeout_s,
            "retrieval": self.retrieval_timeout_s,
            "generation": self.generation_timeout_s,
            "model_list": self.model_list_timeout_s,
        }[operation]

    def retry_policy(self, operation: RemoteOperation) -> RetryPolicy:
        """Build the retry policy applied to one kind of remote call."""
        from evidencerank.llm.retry import RetryPolicy

        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay_s=self.retry_base_delay_s,
            max_delay_s=self.retry_max_delay_s,
            timeout_s=self.timeout_for(operation),
        )


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-deployment config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
