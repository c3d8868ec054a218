"""LLM adapter layer: OpenAI and Anthropic behind a common protocol."""

from pagestruct.config import Settings
from pagestruct.llm.anthropic_provider import AnthropicProvider
from pagestruct.llm.base import LLMProvider, ProviderError, strip_code_fence
from pagestruct.llm.openai_provider import OpenAIProvider


def get_provider(provider_name: str, **kwargs: object) -> LLMProvider:
    """Return the configured LLM provider. provider_name: 'openai' | 'anthropic'."""
    if provider_name.lower() == "anthropic":
        return AnthropicProvider(**kwargs)
    return OpenAIProvider(**kwargs)


def provider_from_settings(settings: Settings) -> LLMProvider:
    """Build the provider named by ``pagestruct_llm_provider`` with its key and model."""
    name = settings.pagestruct_llm_provider.lower()
    if name == "anthropic":
        return get_provider(
            name,
            api_key=settings.anthropic_api_key,
            model=settings.pagestruct_anthropic_model,
            timeout=settings.llm_timeout_seconds,
        )
    return get_provider(
        name,
        api_key=settings.openai_api_key,
        model=settings.pagestruct_openai_model,
        timeout=settings.llm_timeout_seconds,
    )


__all__ = [
    "AnthropicProvider",
    "LLMProvider",
    "OpenAIProvider",
    "ProviderError",
    "get_provider",
    "provider_from_settings",
    "strip_code_fence",
]
