# src/llm/client_factory.py — v3
"""Factory: instantiate the generation LLM client from settings."""

from __future__ import annotations

import importlib
import logging

from evidencerank.config.settings import Settings
from evidencerank.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

# Registry of provider name → adapter class path (lazy import).
_PROVIDER_REGISTRY: dict[str, str] = {
    "anthropic": "evidencerank.llm.adapters.anthropic_adapter.AnthropicAdapter",
    "openai": "evidencerank.llm.adapters.openai_adapter.OpenAIAdapter",
}


class UnsupportedProviderError(ValueError):
    """Raised when a provider is not registered."""


def create_llm_client(
    settings: Settings | None = None,
    provider: str | None = None,
    model: str | None = None,
    **kwargs: object,
) -> BaseLLMClient:
    """Instantiate the correct adapter from provider name.

    Args:
        settings: Application settings (provider, model, API keys).
        provider: Overrides settings.llm_provider.
        model: Overrides settings.llm_model.
        **kwargs: Additional provider-specific arguments.

    Returns:
        Configured BaseLLMClient instance.

    Raises:
        UnsupportedProviderError: If provider is not registered.
    """
    settings = settings or Settings()
    provider = provider or settings.llm_provider
    model = model or settings.llm_model

    if provider not in _PROVIDER_REGISTRY:
        raise UnsupportedProviderError(
            f"Unsupported LLM provider: {provider!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_REGISTRY))}"
        )

    adapter_cls = _import_class(_PROVIDER_REGISTRY[provider])

    init_kwargs = dict(kwargs)
    init_kwargs["model"] = model
    if provider == "anthropic":
        init_kwargs.setdefault("api_key", settings.anthropic_api_key)
    elif provider == "openai":
        init_kwargs.setdefault("api_key", settings.openai_api_key)

    logger.debug("Creating LLM client: provider=%s, model=%s", provider, model)
    return adapter_cls(**init_kwargs)


def register_provider(name: str, class_path: str) -> None:
    """Register a custom provider adapter.

    Args:
        name: Provider identifier.
        class_path: Fully qualified class path implementing BaseLLMClient.
    """
    _PROVIDER_REGISTRY[name] = class_path
    logger.info("Registered LLM provider: %s -> %s", name, class_path)


def _import_class(class_path: str) -> type:
    """Dynamically import a class from its fully qualified path."""
    module_path, class_name = class_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
