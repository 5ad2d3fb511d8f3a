from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from app.config import settings
from app.services.logger import logger
from app.tools import brave_search, tavily_search
from app.tools.tavily_search import SearchResult


@dataclass
class SearchResponse:
    results: list[SearchResult]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


class WebSearchClient(Protocol):
    def is_configured(self) -> bool: ...

    async def search(self, query: str, *, max_results: int = 5) -> list[SearchResult]: ...


def _tavily_available() -> bool:
    return bool(settings.tavily_api_key)


def is_configured() -> bool:
    """True when the selected provider, or its Tavily fallback, has a credential."""
    provider = settings.search_provider.lower().strip()
    if provider == "tavily":
        return _tavily_available()
    if provider == "brave":
        return bool(settings.brave_api_key) or (
            settings.search_fallback_to_tavily and _tavily_available()
        )
    return False


async def _fallback(query: str, max_results: int, reason: str) -> SearchResponse:
    logger.warning(f"Brave search unavailable ({reason}); falling back to Tavily")
    results = await tavily_search.search(query=query, max_results=max_results)
    return SearchResponse(
        results=results,
        provider="tavily",
        fallback_from="brave",
        fallback_reason=reason,
    )


async def search(query: str, *, max_results: int = 5) -> SearchResponse:
    provider = settings.search_provider.lower().strip()
    can_fall_back = settings.search_fallback_to_tavily and _tavily_available()

    if provider == "tavily":
        results = await tavily_search.search(query=query, max_results=max_results)
        return SearchResponse(results=results, provider="tavily")

    if provider == "brave":
        try:
            results = await brave_search.search(query=query, max_results=max_results)
        except Exception as e:
            if not can_fall_back:
                raise
            return await _fallback(query, max_results, str(e))
        if results or not can_fall_back:
            return SearchResponse(results=results, provider="brave")
        return await _fallback(query, max_results, "brave returned zero results")

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")


class ProviderWebSearch:
    """WebSearchClient over the configured provider chain."""

    def is_configured(self) -> bool:
        return is_configured()

    async def search(self, query: str, *, max_results: int = 5) -> list[SearchResult]:
        response = await search(query, max_results=max_results)
        return response.results
