"""SecondOrder - research job runner

Simple CLI that pushes one query through the research queue with an
in-memory job store.
"""

import argparse
import asyncio
import sys

from app.llm_client import get_client
from app.models.events import EventType
from app.models.jobs import JobSpec
from app.services.event_bus import EventBus
from app.services.job_store import InMemoryJobStore
from app.services.knowledge_store import get_knowledge_store
from app.services.queue_service import ResearchQueueService
from app.tools.search_provider import ProviderWebSearch
from app.workers.decomposition import DecompositionWorker
from app.workers.retrieval import RetrievalWorker
from app.workers.scoring import ScoringWorker
from app.workers.synthesis import SynthesisWorker

FINAL_EVENTS = {EventType.COMPLETED, EventType.FAILED, EventType.CANCELLED}


def build_queue(model: str | None = None) -> ResearchQueueService:
    router = get_client(model)
    return ResearchQueueService(
        InMemoryJobStore(),
        decomposition=DecompositionWorker(router),
        retrieval=RetrievalWorker(get_knowledge_store(), ProviderWebSearch()),
        scoring=ScoringWorker(router),
        synthesis=SynthesisWorker(router),
        event_bus=EventBus(),
        max_concurrency=1,
    )


async def run_research(query: str, model: str | None = None, scope_id: str | None = None) -> int:
    """Run one research job and print its events and report."""
    print(f"Research query: {query}")
    print("-" * 50)

    queue = build_queue(model)
    subscription = queue.event_bus.subscribe()
    job = await queue.submit_job(JobSpec(query=query, scope_id=scope_id))

    with subscription:
        async for event in subscription:
            data = event.data
            if data.get("job_id") != job.id:
                continue

            if event.event == EventType.QUEUED:
                print(f"[*] Job {job.id} queued")

            elif event.event == EventType.PROGRESS:
                print(f"  [~] {data.get('stage')}: {data.get('progress')}%")

            elif event.event == EventType.COMPLETED:
                print("\n[*] Research Complete!")
                print(f"   Confidence: {data.get('confidence_score', 0.0):.0%}")
                print(f"   Sources: {data.get('source_count')}")
                if data.get("has_contradictions"):
                    print("   Contradictions detected between sources")

            elif event.event == EventType.FAILED:
                print(f"\n[!] Error: {data.get('error', 'Unknown error')}")

            elif event.event == EventType.CANCELLED:
                print("\n[!] Job cancelled")

            if event.event in FINAL_EVENTS:
                break

    await queue.wait_idle()
    result = await queue.store.get_result(job.id)
    if result is None:
        return 1

    print(f"\n{'='*50}")
    print("REPORT:")
    print(f"{'='*50}")
    print(result.synthesis)
    return 0


def main():
    parser = argparse.ArgumentParser(description="SecondOrder research job runner")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--scope", "-s", help="Knowledge index scope to search")

    args = parser.parse_args()

    sys.exit(asyncio.run(run_research(args.query, args.model, args.scope)))


if __name__ == "__main__":
    main()
