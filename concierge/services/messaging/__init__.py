"""
Messaging Service Factory

Returns Mock or Evolution API messaging service based on ENV_MODE.
"""

import logging
from functools import lru_cache

from concierge.core.config import get_settings
from concierge.services.messaging.base import BaseMessagingService, MessageResult
from concierge.services.messaging.evolution import EvolutionMessagingService
from concierge.services.messaging.mock import MockMessagingService

logger = logging.getLogger(__name__)


@lru_cache()
def get_messaging_service() -> BaseMessagingService:
    """Get the configured messaging service."""
    settings = get_settings()

    if settings.use_real_services:
        logger.info(f"Messaging Service: Using EvolutionMessagingService ({settings.env_mode.value} mode)")
        return EvolutionMessagingService()

    logger.info("Messaging Service: Using MockMessagingService (development mode)")
    return MockMessagingService(failure_rate=settings.mock_failure_rate)


def reset_messaging_service() -> None:
    """Clear the cached service instance."""
    get_messaging_service.cache_clear()


__all__ = [
    "get_messaging_service",
    "reset_messaging_service",
    "BaseMessagingService",
    "EvolutionMessagingService",
    "MockMessagingService",
    "MessageResult",
]
