"""
OpenAI Provider - GPT client for code repair.

API Documentation: https://platform.openai.com/docs/api-reference
"""

import logging
import time
from typing import Optional

from openai import AsyncOpenAI

from bwork.ai.providers.base import (
    AIProvider,
    AIResponse,
    ProviderType,
    TokenUsage,
    clean_json_content,
)
from bwork.core.config import settings

logger = logging.getLogger("bwork.ai.openai")


class OpenAIProvider(AIProvider):
    """
    OpenAI GPT provider implementation.

    Usage:
        provider = OpenAIProvider()
        response = await provider.generate_json(
            prompt="Repair this component...",
            system_prompt="Return JSON with a 'code' field",
        )
    """

    provider_type = ProviderType.OPENAI

    def __init__(self, model: str = None, api_key: str = None):
        self.model = model or settings.OPENAI_MODEL
        self.api_key = api_key or settings.OPENAI_API_KEY

        if self.api_key:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=settings.AI_REQUEST_TIMEOUT)
            logger.info(f"OpenAI provider initialized with model: {self.model}")
        else:
            self._client = None
            logger.warning("OpenAI API key not configured - provider unavailable")

    @property
    def is_available(self) -> bool:
        return self._client is not None

    @staticmethod
    def _usage_of(response) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
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
                error="OpenAI API key not configured",
                model=self.model,
                latency_ms=self._measure_latency(start_time)
            )

        try:
            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})

            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            latency_ms = self._measure_latency(start_time)
            usage = self._usage_of(response)

            logger.info(f"OpenAI request completed in {latency_ms:.0f}ms, tokens: {usage.total_tokens}")
            return AIResponse(
                content=response.choices[0].message.content or "",
                provider=self.provider_type,
                model=self.model,
                usage=usage,
                latency_ms=latency_ms,
            )

        except Exception as e:
            logger.error(f"OpenAI generation failed: {e}")
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
        """Uses OpenAI's JSON mode for structured output."""
        start_time = time.time()

        if not self._client:
            return self._create_error_response(
                error="OpenAI API key not configured",
                model=self.model,
                latency_ms=self._measure_latency(start_time)
            )

        try:
            system_content = (system_prompt or "") + "\n\nYou must respond with valid JSON only, no explanation."
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_content},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.2,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
            latency_ms = self._measure_latency(start_time)

            logger.info(f"OpenAI JSON request completed in {latency_ms:.0f}ms")
            return AIResponse(
                content=clean_json_content(response.choices[0].message.content or "{}"),
                provider=self.provider_type,
                model=self.model,
                usage=self._usage_of(response),
                latency_ms=latency_ms,
            )

        except Exception as e:
            logger.error(f"OpenAI JSON generation failed: {e}")
            return self._create_error_response(
                error=str(e),
                model=self.model,
                latency_ms=self._measure_latency(start_time)
            )
