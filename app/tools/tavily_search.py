from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tavily import AsyncTavilyClient

from app.config import settings


@dataclass
class SearchResult:
    title: str
    url: str
    content: str
    score: float
    published_date: str | None = None


async def search(
    query: str,
    *,
    search_depth: str = "advanced",
    max_results: int = 5,
    topic: str = "general",
    time_range: str | None = None,
) -> list[SearchResult]:
    """Execute a Tavily web search and return structured results."""
    if not settings.tavily_api_key:
        raise RuntimeError("TAVILY_API_KEY is not configured")

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)

    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "topic": topic,
    }
    if time_range:
        kwargs["time_range"] = time_range

    response = await client.search(**kwargs)

    return [
        SearchResult(
            title=r.get("title", "") or "",
            url=r.get("url", "") or "",
            content=r.get("content", "") or "",
            score=float(r.get("score", 0.0) or 0.0),
            published_date=r.get("published_date"),
        )
        for r in response.get("results", [])
    ]
