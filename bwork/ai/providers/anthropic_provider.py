"""
Anthropic Provider - Claude client for code repair.

API Documentation: https://docs.anthropic.com/en/api
"""

import logging
import time
from typing import Optional

from anthropic import AsyncAnthropic

from bwork.ai.providers.base import (
    AIProvider,
    AIResponse,
    ProviderType,
    TokenUsage,
    clean_json_content,
)
from bwork.core.config import settings

logger = logging.getLogger("bwork.ai.anthropic")


class AnthropicProvider(AIProvider):
    """
    Anthropic Claude provider implementation.

    Usage:
        provider = AnthropicProvider()
        response = await provider.generate_json(
            prompt="Repair this component...",
            system_prompt="Return JSON with a 'code' field",
        )
    """

    provider_type = ProviderType.ANTHROPIC

    def __init__(self, model: str = None, api_key: str = None):
        self.model = model or settings.ANTHROPIC_MODEL
        self.api_key = api_key or settings.ANTHROPIC_API_KEY

        if self.api_key:
            self._client = AsyncAnthropic(api_key=self.api_key, timeout=settings.AI_REQUEST_TIMEOUT)
            logger.info(f"Anthropic provider initialized with model: {self.model}")
        else:
            self._client = None
            logger.warning("Anthropic API key not configured - provider unavailable")

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def _create(self, system_prompt: Optional[str], prompt: str,
                      temperature: float, max_tokens: int):
        request_params = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
        }
        if system_prompt:
            request_params["system"] = system_prompt
        return await self._client.messages.create(**request_params)

    @staticmethod
    def _text_of(response) -> str:
        # Claude returns a list of content blocks
        content = ""
        for block in response.content or []:
            if hasattr(block, "text"):
                content += block.text
        return content

    @staticmethod
    def _usage_of(response) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=response.usage.input_tokens if response.usage else 0,
            completion_tokens=response.usage.output_tokens if response.usage else 0,
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs
    ) -> AIResponse:
        start_time = time.time()

        if not self._client:
            return self._create_error_response(
                error="Anthropic API key not configured",
                model=self.model,
                latency_ms=self._measure_latency(start_time)
            )

        try:
            response = await self._create(system_prompt, prompt, temperature, max_tokens)
            latency_ms = self._measure_latency(start_time)
            usage = self._usage_of(response)

            logger.info(f"Anthropic request completed in {latency_ms:.0f}ms, tokens: {usage.total_tokens}")
            return AIResponse(
                content=self._text_of(response),
                provider=self.provider_type,
                model=self.model,
                usage=usage,
                latency_ms=latency_ms,
            )

        except Exception as e:
            logger.error(f"Anthropic generation failed: {e}")
            return self._create_error_response(
                error=str(e),
                model=self.model,
                latency_ms=self._measure_latency(start_time)
            )

    async def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1024,
        **kwargs
    ) -> AIResponse:
        """
        Claude has no native JSON mode; the instruction is appended to the
        system prompt and fences are stripped from the reply.
        """
        start_time = time.time()

        if not self._client:
            return self._create_error_response(
                error="Anthropic API key not configured",
                model=self.model,
                latency_ms=self._measure_latency(start_time)
            )

        try:
            json_system = (system_prompt or "") + (
                "\n\nIMPORTANT: You must respond with valid JSON only. "
                "No explanation, no markdown code blocks - just the raw JSON object."
            )
            response = await self._create(json_system, prompt, 0.2, max_tokens)
            latency_ms = self._measure_latency(start_time)

            logger.info(f"Anthropic JSON request completed in {latency_ms:.0f}ms")
            return AIResponse(
                content=clean_json_content(self._text_of(response)),
                provider=self.provider_type,
                model=self.model,
                usage=self._usage_of(response),
                latency_ms=latency_ms,
            )

        except Exception as e:
            logger.error(f"Anthropic JSON generation failed: {e}")
            return self._create_error_response(
                error=str(e),
                model=self.model,
                latency_ms=self._measure_latency(start_time)
            )
