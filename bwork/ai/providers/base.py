"""
Base AI Provider - Abstract interface for the code-repair LLM clients.

Design Pattern: Strategy Pattern
================================
The base class defines the interface, and each provider implements it.
The AI repairer depends only on AIProvider, so the model vendor is a
configuration choice (AI_REPAIR_PROVIDER).

Example:
    provider = AnthropicProvider()  # or OpenAIProvider()
    response = await provider.generate_json("Fix this component...")
    print(response.content)
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger("bwork.ai")


class ProviderType(str, Enum):
    """Enum of supported AI providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class TokenUsage:
    """Token usage statistics for one request."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if self.total_tokens == 0:
            self.total_tokens = self.prompt_tokens + self.completion_tokens


@dataclass
class AIResponse:
    """
    Standardized response from any AI provider.

    Attributes:
        content: The generated text (a JSON string for generate_json)
        provider: Which provider generated this response
        model: The specific model used
        usage: Token usage statistics
        latency_ms: How long the request took
        success: Whether the request succeeded
        error: Error message if failed
    """
    content: str
    provider: ProviderType
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: float = 0.0
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "content": self.content[:100] + "..." if len(self.content) > 100 else self.content,
            "provider": self.provider.value,
            "model": self.model,
            "tokens": {
                "prompt": self.usage.prompt_tokens,
                "completion": self.usage.completion_tokens,
                "total": self.usage.total_tokens,
            },
            "latency_ms": self.latency_ms,
            "success": self.success,
            "error": self.error,
        }


_FENCED_BLOCK = re.compile(r"```([\w+-]*)[ \t]*\n?([\s\S]*?)```")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def _parse_as_json(text: str) -> Optional[str]:
    for candidate in (text, _TRAILING_COMMA.sub(r"\1", text)):
        try:
            json.loads(candidate)
            return candidate
        except json.JSONDecodeError:
            continue
    return None


def clean_json_content(content: str) -> str:
    """
    Best-effort cleanup of model output meant to be JSON.

    Strips markdown fences and surrounding prose, and drops trailing
    commas when the text does not parse as-is. Replies that are not JSON
    at all (a ```jsx block, bare source code) come back fence-stripped but
    otherwise untouched, so callers can fall back to reading them as code.
    """
    text = (content or "").strip()
    if not text.startswith("{"):
        fenced = _FENCED_BLOCK.search(text)
        if fenced:
            text = fenced.group(2).strip()
            if fenced.group(1).lower() not in ("", "json"):
                return text

    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return text

    if text.startswith("{"):
        text = text[:end + 1]
        return _parse_as_json(text) or _TRAILING_COMMA.sub(r"\1", text)

    # Prose around an object: only narrow when the object really is JSON
    return _parse_as_json(text[start:end + 1]) or text


class AIProvider(ABC):
    """
    Abstract base class for AI providers.

    Responsibilities:
    - Generate text and JSON responses from prompts
    - Never raise: failures come back as AIResponse(success=False)
    - Track token usage and latency
    """

    provider_type: ProviderType
    model: str

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether the provider has credentials to make requests."""
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs
    ) -> AIResponse:
        """
        Generate a response from the AI model.

        Raises:
            This method should NOT raise exceptions.
            Errors are captured in AIResponse.error
        """
        pass

    @abstractmethod
    async def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1024,
        **kwargs
    ) -> AIResponse:
        """
        Generate a JSON response from the AI model.

        The content is cleaned of fences but not guaranteed to parse;
        callers validate it against their own schema.
        """
        pass

    def _measure_latency(self, start_time: float) -> float:
        return (time.time() - start_time) * 1000

    def _create_error_response(
        self,
        error: str,
        model: str,
        latency_ms: float = 0.0
    ) -> AIResponse:
        logger.error(f"AI Provider Error [{self.provider_type.value}]: {error}")
        return AIResponse(
            content="",
            provider=self.provider_type,
            model=model,
            latency_ms=latency_ms,
            success=False,
            error=error,
        )
