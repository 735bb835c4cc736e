"""
Web Search Service

Production implementation over httpx:
    - Google Custom Search JSON API for structured results
    - DuckDuckGo HTML results page when the API is not configured or fails
    - Plain GET for restaurant pages

API Documentation:
    https://developers.google.com/custom-search/v1/reference/rest/v1/cse/list
"""

import html
import logging
import re
from typing import Optional
from urllib.parse import parse_qs, unquote, urlparse

import httpx

from concierge.core.config import get_settings
from concierge.core.exceptions import RetryExhaustedError, SearchError, SearchUnavailableError
from concierge.core.retry import RetryPolicy, with_retry
from concierge.services.search.base import BaseSearchService, SearchResult

logger = logging.getLogger(__name__)

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"

_RESULT_LINK_RE = re.compile(
    r'<a[^>]+class="[^"]*result__a[^"]*"[^>]+href="([^"]+)"[^>]*>(.*?)</a>',
    re.IGNORECASE | re.DOTALL,
)
_RESULT_SNIPPET_RE = re.compile(
    r'<(?:a|div)[^>]+class="[^"]*result__snippet[^"]*"[^>]*>(.*?)</(?:a|div)>',
    re.IGNORECASE | re.DOTALL,
)
_TAG_RE = re.compile(r"<[^>]+>")


def _strip_tags(fragment: str) -> str:
    return html.unescape(_TAG_RE.sub("", fragment)).strip()


def _resolve_redirect(href: str) -> str:
    """DuckDuckGo wraps result links as /l/?uddg=<target>."""
    href = html.unescape(href)
    if href.startswith("//"):
        href = "https:" + href
    parsed = urlparse(href)
    target = parse_qs(parsed.query).get("uddg")
    if target:
        return unquote(target[0])
    return href


def parse_results_page(page: str, limit: Optional[int] = None) -> list[SearchResult]:
    """Pull (title, link, snippet) triples out of a DuckDuckGo HTML page."""
    links = _RESULT_LINK_RE.findall(page)
    snippets = _RESULT_SNIPPET_RE.findall(page)

    results = []
    for index, (href, title) in enumerate(links):
        snippet = _strip_tags(snippets[index]) if index < len(snippets) else ""
        results.append(SearchResult(
            title=_strip_tags(title),
            link=_resolve_redirect(href),
            snippet=snippet,
        ))
        if limit and len(results) >= limit:
            break
    return results


class WebSearchService(BaseSearchService):
    """
    httpx-backed search service.

    Owns one AsyncClient (connection pool) for all three operations.
    Every request runs under the shared retry policy.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        settings = get_settings()

        self._api_key = settings.google_search_api_key
        self._engine_id = settings.google_search_engine_id
        self._scrape_url = settings.search_scrape_url
        self._max_results = settings.discovery_max_results
        self._policy = RetryPolicy.from_settings(settings)
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": settings.http_user_agent},
            follow_redirects=True,
            timeout=settings.request_timeout_seconds,
        )

        if not settings.has_search_api:
            logger.warning("Google Custom Search not configured; results will be scraped")
        logger.info("WebSearchService initialized")

    @property
    def provider_name(self) -> str:
        return "web"

    async def _get(self, url: str, operation: str, **kwargs) -> httpx.Response:
        async def attempt() -> httpx.Response:
            response = await self._client.get(url, **kwargs)
            response.raise_for_status()
            return response

        try:
            return await with_retry(attempt, self._policy, operation=operation, retry_on=(httpx.HTTPError,))
        except RetryExhaustedError as e:
            raise SearchError(str(e), provider=self.provider_name) from e

    async def search(self, query: str) -> list[SearchResult]:
        if not (self._api_key and self._engine_id):
            raise SearchUnavailableError("Google Custom Search is not configured", provider="google")

        response = await self._get(
            GOOGLE_SEARCH_URL,
            "google.search",
            params={
                "key": self._api_key,
                "cx": self._engine_id,
                "q": query,
                "num": min(self._max_results, 10),
            },
        )
        try:
            items = response.json().get("items", [])
        except ValueError as e:
            raise SearchError(f"Invalid search response: {e}", provider="google") from e

        results = [
            SearchResult(
                title=item.get("title", ""),
                link=item.get("link", ""),
                snippet=item.get("snippet", ""),
            )
            for item in items
        ]
        logger.info(f"Google search '{query}': {len(results)} result(s)")
        return results

    async def scrape_search(self, query: str) -> list[SearchResult]:
        response = await self._get(self._scrape_url, "scrape.search", params={"q": query})
        results = parse_results_page(response.text, limit=self._max_results)
        logger.info(f"Scraped search '{query}': {len(results)} result(s)")
        return results

    async def fetch_page(self, url: str) -> str:
        response = await self._get(url, "fetch.page")
        return response.text

    async def aclose(self) -> None:
        await self._client.aclose()
