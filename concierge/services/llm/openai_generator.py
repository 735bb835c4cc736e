"""
OpenAI Text Generator

Production implementation using the OpenAI chat completions API.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - OPENAI_API_KEY must be set in environment
"""

import logging

from openai import AsyncOpenAI, OpenAIError

from concierge.core.config import get_settings
from concierge.core.exceptions import GenerationError, RetryExhaustedError
from concierge.core.retry import RetryPolicy, with_retry
from concierge.services.llm.base import BaseTextGenerator

logger = logging.getLogger(__name__)


class OpenAITextGenerator(BaseTextGenerator):
    """Text generation through ``AsyncOpenAI`` with the shared retry policy."""

    def __init__(self):
        """
        Raises:
            ValueError: If OPENAI_API_KEY is not configured
        """
        settings = get_settings()

        if not settings.openai_api_key:
            raise ValueError(
                "OPENAI_API_KEY is required for production mode. "
                "Set it in your .env file or environment variables."
            )

        # Retries are ours, not the SDK's
        self._client = AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0)
        self._model = settings.openai_model
        self._temperature = settings.openai_temperature
        self._policy = RetryPolicy.from_settings(settings)

        logger.info(f"OpenAITextGenerator initialized (model={self._model})")

    @property
    def provider_name(self) -> str:
        return "openai"

    async def _complete(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            temperature=self._temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return (response.choices[0].message.content or "").strip()

    async def generate(self, prompt: str) -> str:
        try:
            text = await with_retry(
                lambda: self._complete(prompt),
                self._policy,
                operation="openai.generate",
                retry_on=(OpenAIError,),
            )
        except RetryExhaustedError as e:
            raise GenerationError(str(e), provider="openai") from e

        if not text:
            raise GenerationError("Empty completion", provider="openai")
        return text

    async def aclose(self) -> None:
        await self._client.close()
