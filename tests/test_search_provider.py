from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.tools import brave_search, search_provider, tavily_search
from app.tools.search_provider import ProviderWebSearch
from app.tools.tavily_search import SearchResult

RESULTS = [SearchResult(title="T", url="https://t.example", content="tavily text", score=0.7)]


def _settings(mock_settings, provider="brave", brave_key="b", tavily_key="t", fallback=True):
    mock_settings.search_provider = provider
    mock_settings.brave_api_key = brave_key
    mock_settings.tavily_api_key = tavily_key
    mock_settings.search_fallback_to_tavily = fallback


@pytest.mark.asyncio
async def test_tavily_provider_calls_tavily():
    with patch("app.tools.search_provider.settings") as mock_settings, patch.object(
        tavily_search, "search", AsyncMock(return_value=RESULTS)
    ) as tavily:
        _settings(mock_settings, provider="tavily")
        response = await search_provider.search("qubits", max_results=3)

    assert response.provider == "tavily"
    assert response.results == RESULTS
    tavily.assert_awaited_once_with(query="qubits", max_results=3)


@pytest.mark.asyncio
async def test_brave_error_falls_back_to_tavily():
    with patch("app.tools.search_provider.settings") as mock_settings, patch.object(
        brave_search, "search", AsyncMock(side_effect=RuntimeError("429 Too Many Requests"))
    ), patch.object(tavily_search, "search", AsyncMock(return_value=RESULTS)):
        _settings(mock_settings)
        response = await search_provider.search("qubits")

    assert response.provider == "tavily"
    assert response.fallback_from == "brave"
    assert "429" in response.fallback_reason


@pytest.mark.asyncio
async def test_brave_error_raises_without_fallback():
    with patch("app.tools.search_provider.settings") as mock_settings, patch.object(
        brave_search, "search", AsyncMock(side_effect=RuntimeError("down"))
    ):
        _settings(mock_settings, tavily_key="")
        with pytest.raises(RuntimeError):
            await search_provider.search("qubits")


@pytest.mark.asyncio
async def test_brave_empty_results_fall_back():
    with patch("app.tools.search_provider.settings") as mock_settings, patch.object(
        brave_search, "search", AsyncMock(return_value=[])
    ), patch.object(tavily_search, "search", AsyncMock(return_value=RESULTS)):
        _settings(mock_settings)
        response = await search_provider.search("qubits")

    assert response.fallback_reason == "brave returned zero results"


@pytest.mark.asyncio
async def test_search_provider_raises_when_provider_unsupported():
    with patch("app.tools.search_provider.settings") as mock_settings:
        _settings(mock_settings, provider="unknown-provider")
        with pytest.raises(ValueError):
            await search_provider.search("query")


@pytest.mark.parametrize(
    "provider, brave_key, tavily_key, fallback, expected",
    [
        ("tavily", "", "t", True, True),
        ("tavily", "b", "", True, False),
        ("brave", "b", "", False, True),
        ("brave", "", "t", True, True),
        ("brave", "", "t", False, False),
        ("other", "b", "t", True, False),
    ],
)
def test_is_configured(provider, brave_key, tavily_key, fallback, expected):
    with patch("app.tools.search_provider.settings") as mock_settings:
        _settings(mock_settings, provider, brave_key, tavily_key, fallback)
        assert ProviderWebSearch().is_configured() is expected


def test_brave_map_results():
    payload = {
        "web": {
            "results": [
                {"title": "A", "url": "https://a.example", "description": "alpha", "page_age": "2025-11-02T00:00:00"},
                {"title": "No url", "description": "skipped"},
                {"title": "C", "url": "https://c.example", "extra_snippets": ["one", "two"]},
                {"title": "D", "url": "https://d.example", "description": "delta"},
            ]
        }
    }

    results = brave_search.map_results(payload)

    assert [r.url for r in results] == ["https://a.example", "https://c.example", "https://d.example"]
    assert [r.score for r in results] == [1.0, 0.5, 0.25]
    assert results[0].published_date == "2025-11-02T00:00:00"
    assert results[1].content == "one two"
    assert brave_search.map_results({}) == []


@pytest.mark.asyncio
async def test_brave_search_sends_token_and_count():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["token"] = request.headers["X-Subscription-Token"]
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"web": {"results": [{"title": "A", "url": "https://a.example", "description": "alpha"}]}})

    with patch("app.tools.brave_search.settings") as mock_settings:
        mock_settings.brave_api_key = "brave-key"
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            results = await brave_search.search("qubits", max_results=4, http_client=client)

    assert seen == {"token": "brave-key", "params": {"q": "qubits", "count": "4"}}
    assert results[0].content == "alpha"


@pytest.mark.asyncio
async def test_brave_search_raises_on_http_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "rate limited"})

    with patch("app.tools.brave_search.settings") as mock_settings:
        mock_settings.brave_api_key = "brave-key"
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await brave_search.search("qubits", http_client=client)


@pytest.mark.asyncio
async def test_searches_require_credentials():
    with patch("app.tools.brave_search.settings") as brave_settings, patch(
        "app.tools.tavily_search.settings"
    ) as tavily_settings:
        brave_settings.brave_api_key = ""
        tavily_settings.tavily_api_key = ""
        with pytest.raises(RuntimeError):
            await brave_search.search("q")
        with pytest.raises(RuntimeError):
            await tavily_search.search("q")


@pytest.mark.asyncio
async def test_tavily_search_maps_response():
    fake_client = AsyncMock()
    fake_client.search.return_value = {
        "results": [{"title": "T", "url": "https://t.example", "content": "text", "score": 0.42, "published_date": "2025-01-01"}]
    }
    with patch("app.tools.tavily_search.settings") as mock_settings, patch(
        "app.tools.tavily_search.AsyncTavilyClient", return_value=fake_client
    ):
        mock_settings.tavily_api_key = "t"
        results = await tavily_search.search("qubits", max_results=2, time_range="year")

    assert results == [SearchResult(title="T", url="https://t.example", content="text", score=0.42, published_date="2025-01-01")]
    fake_client.search.assert_awaited_once_with(
        query="qubits", search_depth="advanced", max_results=2, topic="general", time_range="year"
    )
