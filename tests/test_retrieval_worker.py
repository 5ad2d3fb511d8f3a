"""Tests for hybrid retrieval."""
import asyncio

import pytest

from app.workers.retrieval import RetrievalWorker
from fakes import FakeKnowledgeStore, FakeWebSearch, hit, web_result


def make_worker(store, web=None, **kwargs):
    kwargs.setdefault("timeout_s", 1.0)
    return RetrievalWorker(store, web, **kwargs)


@pytest.mark.asyncio
async def test_hybrid_results_are_fused_and_tagged():
    store = FakeKnowledgeStore([hit("c1", "Shared text about qubits"), hit("c2", "Only in the index")])
    web = FakeWebSearch(
        [web_result("https://a.example", "shared   TEXT about qubits"), web_result("https://b.example", "Only on the web")]
    )

    outcome = await make_worker(store, web).execute(["q1"], "scope-1")

    assert outcome.degraded is False
    items = outcome.value
    assert len(items) == 3
    assert items[0].text == "Shared text about qubits"
    assert items[0].retrieval_method == "rag"
    assert items[0].rrf_score == pytest.approx(1 / 61 + 1 / 61)
    assert {i.retrieval_method for i in items} == {"rag", "web"}
    assert all(i.id and len(i.id) == 16 for i in items)
    assert store.calls == [("scope-1", "q1", 5)]


@pytest.mark.asyncio
async def test_web_search_limited_to_first_three_sub_questions():
    store = FakeKnowledgeStore([hit("c1", "indexed")])
    web = FakeWebSearch([web_result("https://a.example", "from the web")])
    questions = [f"q{i}" for i in range(5)]

    await make_worker(store, web).execute(questions, "scope")

    assert web.queries == ["q0", "q1", "q2"]
    assert [call[1] for call in store.calls] == questions


@pytest.mark.asyncio
async def test_web_search_skipped_without_credentials():
    store = FakeKnowledgeStore([hit("c1", "indexed")])
    web = FakeWebSearch([web_result("https://a.example", "from the web")], configured=False)

    outcome = await make_worker(store, web).execute(["q"], "scope")

    assert web.queries == []
    assert [i.retrieval_method for i in outcome.value] == ["rag"]


@pytest.mark.asyncio
async def test_failed_index_lookup_counts_as_empty():
    store = FakeKnowledgeStore(error=RuntimeError("index offline"))
    web = FakeWebSearch([web_result("https://a.example", "from the web")])

    outcome = await make_worker(store, web).execute(["q"], "scope")

    assert outcome.degraded is False
    assert [i.url for i in outcome.value] == ["https://a.example"]


@pytest.mark.asyncio
async def test_nothing_found_is_degraded_and_empty():
    store = FakeKnowledgeStore(error=RuntimeError("index offline"))
    web = FakeWebSearch(error=RuntimeError("rate limited"))

    outcome = await make_worker(store, web).execute(["q"], "scope")

    assert outcome.degraded is True
    assert outcome.value == []
    assert "index offline" in outcome.error
    assert "rate limited" in outcome.error


@pytest.mark.asyncio
async def test_slow_lookup_times_out_without_sinking_the_stage():
    class SlowStore(FakeKnowledgeStore):
        async def search(self, scope_id, query, top_k=5):
            await asyncio.sleep(1)
            return []

    web = FakeWebSearch([web_result("https://a.example", "from the web")])
    outcome = await make_worker(SlowStore(), web, timeout_s=0.01).execute(["q"], "scope")

    assert len(outcome.value) == 1
    assert outcome.value[0].retrieval_method == "web"


@pytest.mark.asyncio
async def test_index_metadata_carries_through():
    store = FakeKnowledgeStore(
        [
            hit(
                "chunk-9",
                "Peer reviewed result",
                0.7,
                evidence_id="ev-1",
                url="https://journal.example/paper",
                title="Paper",
                published_at="2025-06-01",
                credibility_tier="PRIMARY_SOURCE",
            )
        ]
    )

    outcome = await make_worker(store).execute(["q"], "scope")

    item = outcome.value[0]
    assert item.id == "ev-1"
    assert item.url == "https://journal.example/paper"
    assert item.title == "Paper"
    assert item.raw_score == 0.7
    assert item.published_at == "2025-06-01"
    assert item.metadata["chunk_id"] == "chunk-9"


@pytest.mark.asyncio
async def test_web_results_without_content_are_skipped():
    web = FakeWebSearch([web_result("https://a.example", ""), web_result("https://b.example", "text")])
    outcome = await make_worker(FakeKnowledgeStore(), web).execute(["q"], "scope")
    assert [i.url for i in outcome.value] == ["https://b.example"]
