"""
Mock Search Service

Serves scripted results and pages for development and tests. With no
script it returns nothing, so discovery falls back to its fixed list.
"""

import asyncio
import logging
import random
from typing import Optional

from concierge.core.exceptions import SearchError, SearchUnavailableError
from concierge.services.search.base import BaseSearchService, SearchResult

logger = logging.getLogger(__name__)


class MockSearchService(BaseSearchService):
    """
    Mock search service.

    Args:
        results: Returned by ``search`` (or by ``scrape_search`` when
            ``api_available`` is False)
        pages: URL -> HTML served by ``fetch_page``; unknown URLs fail
        api_available: When False, ``search`` raises SearchUnavailableError
        fail_all: Every operation raises SearchError
        failure_rate: Probability of a simulated SearchError
    """

    def __init__(
        self,
        results: Optional[list[SearchResult]] = None,
        pages: Optional[dict[str, str]] = None,
        api_available: bool = True,
        fail_all: bool = False,
        failure_rate: float = 0.0,
        latency: float = 0.0,
    ):
        self.results = list(results or [])
        self.pages = dict(pages or {})
        self.api_available = api_available
        self.fail_all = fail_all
        self.failure_rate = failure_rate
        self.latency = latency
        self.queries: list[str] = []
        self.fetched: list[str] = []
        logger.info(f"MockSearchService initialized ({len(self.results)} scripted result(s))")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate(self, operation: str) -> None:
        if self.latency:
            await asyncio.sleep(random.uniform(0, self.latency))
        if self.fail_all or (self.failure_rate and random.random() < self.failure_rate):
            logger.warning(f"Mock {operation} failed (simulated)")
            raise SearchError(f"Simulated {operation} failure", provider="mock")

    async def search(self, query: str) -> list[SearchResult]:
        self.queries.append(query)
        if not self.api_available:
            raise SearchUnavailableError("Mock search API disabled", provider="mock")
        await self._simulate("search")
        return list(self.results)

    async def scrape_search(self, query: str) -> list[SearchResult]:
        self.queries.append(query)
        await self._simulate("scrape")
        return list(self.results)

    async def fetch_page(self, url: str) -> str:
        self.fetched.append(url)
        await self._simulate("fetch")
        if url not in self.pages:
            raise SearchError(f"Mock page not found: {url}", provider="mock")
        return self.pages[url]
