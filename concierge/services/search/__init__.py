"""
Search Service Factory

Returns Mock or Web search service based on ENV_MODE.
"""

import logging
from functools import lru_cache

from concierge.core.config import get_settings
from concierge.services.search.base import BaseSearchService, SearchResult
from concierge.services.search.mock import MockSearchService
from concierge.services.search.web import WebSearchService, parse_results_page

logger = logging.getLogger(__name__)


@lru_cache()
def get_search_service() -> BaseSearchService:
    """Get the configured search service."""
    settings = get_settings()

    if settings.use_real_services:
        logger.info(f"Search Service: Using WebSearchService ({settings.env_mode.value} mode)")
        return WebSearchService()

    logger.info("Search Service: Using MockSearchService (development mode)")
    return MockSearchService(failure_rate=settings.mock_failure_rate, latency=0.2)


def reset_search_service() -> None:
    """Clear the cached service instance."""
    get_search_service.cache_clear()


__all__ = [
    "get_search_service",
    "reset_search_service",
    "BaseSearchService",
    "MockSearchService",
    "WebSearchService",
    "SearchResult",
    "parse_results_page",
]
