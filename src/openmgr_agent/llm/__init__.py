"""
LLM module for multi-provider AI model support.

Providers:
- Anthropic Claude (native SDK)
- OpenAI GPT (native SDK)
- Google Gemini (via OpenAI-compatible endpoint)
- OpenRouter (via OpenAI-compatible endpoint)
"""

from .base import (
    BaseLLM,
    LLMMessage,
    LLMRequest,
    LLMResponse,
    LLMStream,
    StreamChunk,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm
from .registry import ProviderRegistry

__all__ = [
    "BaseLLM",
    "LLMMessage",
    "LLMRequest",
    "LLMResponse",
    "LLMStream",
    "StreamChunk",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
    "ProviderRegistry",
]
