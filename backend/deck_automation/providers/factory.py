from deck_automation.config import settings
from deck_automation.providers.anthropic_provider import AnthropicProvider
from deck_automation.providers.base import BaseTextProvider
from deck_automation.providers.gemini_provider import GeminiProvider
from deck_automation.providers.openai_provider import OpenAIProvider


def get_provider(name: str | None = None, *, api_key: str | None = None) -> BaseTextProvider:
    """Return the configured backend; ``api_key`` overrides the stored key for that backend."""
    candidate = (name or settings.default_llm_provider).lower()

    if candidate == "gemini":
        key = api_key or settings.gemini_api_key
        if key:
            return GeminiProvider(key)
    elif candidate == "anthropic":
        key = api_key or settings.anthropic_api_key
        if key:
            return AnthropicProvider(key)
    elif candidate == "openai":
        key = api_key or settings.openai_api_key
        if key:
            return OpenAIProvider(key)
    else:
        raise ValueError(f"Unknown outline provider '{candidate}'")

    raise ValueError(f"{candidate.capitalize()} API key required")
