from __future__ import annotations

from typing import Any

import httpx

from app.config import settings
from app.tools.tavily_search import SearchResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
REQUEST_TIMEOUT_S = 30.0


def map_results(payload: dict[str, Any]) -> list[SearchResult]:
    """Normalize a Brave ``web.results`` payload into SearchResult rows.

    Brave exposes no relevance score, so a linear rank-based score in (0, 1]
    stands in for it.
    """
    raw_results = (payload.get("web") or {}).get("results") or []
    total = max(len(raw_results), 1)
    mapped: list[SearchResult] = []
    for idx, item in enumerate(raw_results):
        url = item.get("url") or ""
        if not url:
            continue
        description = (item.get("description") or "").strip()
        snippets = item.get("extra_snippets") or []
        mapped.append(
            SearchResult(
                title=item.get("title") or "",
                url=url,
                content=description or " ".join(snippets).strip(),
                score=max(0.0, 1.0 - (idx / total)),
                published_date=item.get("page_age"),
            )
        )
    return mapped


async def search(
    query: str,
    *,
    max_results: int = 5,
    http_client: httpx.AsyncClient | None = None,
) -> list[SearchResult]:
    """Execute a Brave web search. Raises when no key is configured or the API errors."""
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    request = {
        "params": {"q": query, "count": max_results},
        "headers": {
            "Accept": "application/json",
            "X-Subscription-Token": settings.brave_api_key,
        },
    }
    if http_client is not None:
        response = await http_client.get(BRAVE_SEARCH_URL, **request)
    else:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S) as client:
            response = await client.get(BRAVE_SEARCH_URL, **request)
    response.raise_for_status()
    return map_results(response.json())
