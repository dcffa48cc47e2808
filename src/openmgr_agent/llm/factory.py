"""
LLM factory for creating provider instances.

Supports: Anthropic Claude, OpenAI GPT, Google Gemini (OpenAI-compatible
endpoint), OpenRouter.
"""

from ..config import LLMConfig, Settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    - openai -> OpenAILLM (native OpenAI SDK)
    - google -> OpenAILLM (Gemini's OpenAI-compatible endpoint)
    - openrouter -> OpenAILLM (OpenAI-compatible endpoint)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    provider = config.provider

    if provider == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    elif provider in ("openai", "google", "openrouter"):
        default_urls = {
            "openai": None,
            "google": "https://generativelanguage.googleapis.com/v1beta/openai/",
            "openrouter": "https://openrouter.ai/api/v1",
        }
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url or default_urls[provider],
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            provider=provider,
        )
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")
