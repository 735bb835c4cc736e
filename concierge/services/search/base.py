"""
Web Search Abstract Base Class

Defines the three outbound operations restaurant discovery depends on:
a structured search API, a scrape of a general results page, and a raw
page fetch.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class SearchResult:
    """One web search hit."""
    title: str
    link: str
    snippet: str = ""

    def mentions(self, needle: str) -> bool:
        """Case-insensitive substring test over title, snippet and link."""
        needle = needle.lower()
        return (
            needle in self.title.lower()
            or needle in self.snippet.lower()
            or needle in self.link.lower()
        )


class BaseSearchService(ABC):
    """Abstract base class for web search services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def search(self, query: str) -> list[SearchResult]:
        """
        Query the structured search API.

        Raises:
            SearchUnavailableError: If the API is not configured
            SearchError: If the call failed after retries
        """
        pass

    @abstractmethod
    async def scrape_search(self, query: str) -> list[SearchResult]:
        """
        Scrape a general web search results page.

        Raises:
            SearchError: If the page could not be fetched or parsed
        """
        pass

    @abstractmethod
    async def fetch_page(self, url: str) -> str:
        """
        Fetch raw HTML.

        Raises:
            SearchError: If the page could not be fetched
        """
        pass

    async def aclose(self) -> None:
        """Release network resources, if any."""
        return None
