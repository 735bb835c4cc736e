"""
Text Generator Factory

Returns Mock or OpenAI text generator based on ENV_MODE.
"""

import logging
from functools import lru_cache

from concierge.core.config import get_settings
from concierge.services.llm.base import (
    BaseTextGenerator,
    find_json_object,
    parse_json_object,
)
from concierge.services.llm.mock import MockTextGenerator
from concierge.services.llm.openai_generator import OpenAITextGenerator

logger = logging.getLogger(__name__)


@lru_cache()
def get_text_generator() -> BaseTextGenerator:
    """Get the configured text generator."""
    settings = get_settings()

    if settings.use_real_services:
        logger.info(f"Text Generator: Using OpenAITextGenerator ({settings.env_mode.value} mode)")
        return OpenAITextGenerator()

    logger.info("Text Generator: Using MockTextGenerator (development mode)")
    return MockTextGenerator(failure_rate=settings.mock_failure_rate)


def reset_text_generator() -> None:
    """Clear the cached generator instance."""
    get_text_generator.cache_clear()


__all__ = [
    "get_text_generator",
    "reset_text_generator",
    "BaseTextGenerator",
    "MockTextGenerator",
    "OpenAITextGenerator",
    "find_json_object",
    "parse_json_object",
]
