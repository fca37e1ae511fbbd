"""
AI Providers Module - Interchangeable LLM clients used for code repair.

Each provider has the same interface:
    response = await provider.generate_json(prompt, system_prompt=...)

get_repair_provider() returns the client selected by AI_REPAIR_PROVIDER.
"""

from typing import Optional

from bwork.ai.providers.anthropic_provider import AnthropicProvider
from bwork.ai.providers.base import AIProvider, AIResponse, ProviderType, TokenUsage
from bwork.ai.providers.openai_provider import OpenAIProvider
from bwork.core.config import settings

_repair_provider: Optional[AIProvider] = None


def get_repair_provider() -> AIProvider:
    """Lazily build the configured repair provider (Anthropic by default)."""
    global _repair_provider
    if _repair_provider is None:
        if settings.AI_REPAIR_PROVIDER == ProviderType.OPENAI.value:
            _repair_provider = OpenAIProvider()
        else:
            _repair_provider = AnthropicProvider()
    return _repair_provider


__all__ = [
    "AIProvider",
    "AIResponse",
    "ProviderType",
    "TokenUsage",
    "AnthropicProvider",
    "OpenAIProvider",
    "get_repair_provider",
]
