"""Bounded-concurrency job queue driving the four research stages.

Jobs wait in an in-process FIFO and at most ``max_concurrency`` of them run at
once, each as its own asyncio task. All job state lives in the ``JobStore``;
the queue only holds ids.
"""
from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime
from typing import Any

from app.config import settings
from app.models.errors import InvalidTransitionError, JobNotFoundError, ResearchError
from app.models.evidence import StageOutcome
from app.models.jobs import JobSpec, JobStatus, ResearchJob, Stage
from app.services import logger as log_service
from app.services import streaming
from app.services.event_bus import EventBus
from app.services.job_store import JobStore
from app.services.logger import logger
from app.workers.decomposition import DecompositionWorker
from app.workers.retrieval import RetrievalWorker
from app.workers.scoring import ScoringWorker
from app.workers.synthesis import SynthesisWorker


class ResearchQueueService:
    def __init__(
        self,
        store: JobStore,
        *,
        decomposition: DecompositionWorker,
        retrieval: RetrievalWorker,
        scoring: ScoringWorker,
        synthesis: SynthesisWorker,
        event_bus: EventBus,
        max_concurrency: int | None = None,
        fail_on_synthesis_error: bool | None = None,
    ):
        self.store = store
        self.decomposition = decomposition
        self.retrieval = retrieval
        self.scoring = scoring
        self.synthesis = synthesis
        self.event_bus = event_bus
        self.max_concurrency = max(max_concurrency or settings.research_max_concurrency, 1)
        self.fail_on_synthesis_error = (
            settings.fail_on_synthesis_error
            if fail_on_synthesis_error is None
            else fail_on_synthesis_error
        )
        self._queue: deque[str] = deque()
        self._active_count = 0
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def active_count(self) -> int:
        return self._active_count

    async def submit_job(self, spec: JobSpec) -> ResearchJob:
        if self._closed:
            raise ResearchError("Queue service is shut down")
        job = await self.store.create_job(spec)
        self.event_bus.publish(streaming.research_queued(job))
        self._queue.append(job.id)
        log_service.log_research_step(job.id, "queue", "queued", {"queue_length": len(self._queue)})
        self._drain()
        return job

    def _drain(self) -> None:
        while not self._closed and self._active_count < self.max_concurrency and self._queue:
            job_id = self._queue.popleft()
            self._active_count += 1
            task = asyncio.create_task(self.process_job(job_id), name=f"research-job-{job_id}")
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        # Runs even for tasks cancelled before their first step.
        self._tasks.discard(task)
        self._active_count -= 1
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error(f"Research task {task.get_name()} crashed")
        self._drain()

    async def _is_cancelled(self, job_id: str) -> bool:
        job = await self.store.get_job(job_id)
        return job is None or job.is_terminal

    async def _progress(self, job_id: str, stage: Stage, progress: int) -> None:
        await self.store.update_stage_progress(job_id, stage, progress)
        self.event_bus.publish(streaming.research_progress(job_id, stage, progress))

    def _log_outcome(self, job_id: str, stage: Stage, outcome: StageOutcome[Any], **data: Any) -> None:
        if outcome.degraded:
            data["error"] = outcome.error
        log_service.log_research_step(
            job_id, stage.value, "degraded" if outcome.degraded else "completed", data
        )

    async def process_job(self, job_id: str) -> None:
        job = await self.store.get_job(job_id)
        if job is None or job.is_terminal:
            return

        try:
            await self.store.update_status(job_id, JobStatus.PROCESSING)

            await self._progress(job_id, Stage.DECOMPOSITION, 0)
            decomposition = await self.decomposition.execute(job.query)
            sub_questions = decomposition.value
            self._log_outcome(job_id, Stage.DECOMPOSITION, decomposition, count=len(sub_questions))
            if await self._is_cancelled(job_id):
                return
            await self.store.set_query_decomposition(job_id, sub_questions)
            await self._progress(job_id, Stage.DECOMPOSITION, 100)

            if await self._is_cancelled(job_id):
                return
            await self._progress(job_id, Stage.RETRIEVAL, 0)
            retrieval = await self.retrieval.execute(sub_questions, job.retrieval_scope)
            evidence = retrieval.value
            self._log_outcome(job_id, Stage.RETRIEVAL, retrieval, count=len(evidence))
            if await self._is_cancelled(job_id):
                return
            await self._progress(job_id, Stage.RETRIEVAL, 100)

            if await self._is_cancelled(job_id):
                return
            await self._progress(job_id, Stage.SCORING, 0)
            scoring = await self.scoring.execute(evidence, job.query)
            scored = scoring.value
            self._log_outcome(
                job_id,
                Stage.SCORING,
                scoring,
                sources=len(scored.scored_sources),
                claims=len(scored.scored_claims),
            )
            if await self._is_cancelled(job_id):
                return
            sources = sorted(scored.scored_sources, key=lambda s: s.composite or 0.0, reverse=True)
            for source in sources:
                await self.store.add_source(
                    job_id=job_id,
                    url=source.url,
                    title=source.title,
                    content_preview=source.text,
                    domain_authority=source.domain_authority,
                    recency_score=source.recency_score,
                    relevance_score=source.relevance_score,
                    credibility_tier=source.credibility_tier,
                    composite_score=source.composite,
                    retrieval_method=source.retrieval_method,
                )
            await self._progress(job_id, Stage.SCORING, 100)

            if await self._is_cancelled(job_id):
                return
            await self.store.update_status(job_id, JobStatus.SYNTHESIZING)
            await self._progress(job_id, Stage.SYNTHESIS, 0)
            confidence = scored.job_confidence
            synthesis = await self.synthesis.execute(
                job.query, sources, scored.scored_claims, confidence
            )
            self._log_outcome(job_id, Stage.SYNTHESIS, synthesis)
            if synthesis.degraded and self.fail_on_synthesis_error:
                raise ResearchError(f"Synthesis failed: {synthesis.error}")
            await self._progress(job_id, Stage.SYNTHESIS, 100)

            if await self._is_cancelled(job_id):
                return
            result_id = await self.store.save_result(
                job_id=job_id,
                synthesis=synthesis.value.synthesis,
                sources=[source.to_dict() for source in sources],
                claims=[claim.to_dict() for claim in scored.scored_claims],
                evidence_set=[item.to_dict() for item in evidence],
                token_usage=synthesis.value.token_usage,
                synthesis_error=synthesis.value.error,
            )
            await self.store.complete_job(
                job_id,
                result_id=result_id,
                confidence_score=confidence.confidence,
                source_count=confidence.source_count,
                has_contradictions=confidence.has_contradictions,
            )
            self.event_bus.publish(
                streaming.research_completed(
                    job_id,
                    confidence.confidence,
                    result_id=result_id,
                    source_count=confidence.source_count,
                    has_contradictions=confidence.has_contradictions,
                )
            )
            log_service.log_research_step(
                job_id, "job", "completed", {"confidence": confidence.confidence}
            )
        except Exception as e:
            await self._fail(job_id, e)

    async def _fail(self, job_id: str, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        if await self._is_cancelled(job_id):
            # Cancelled or expired while running; the terminal status stands.
            logger.info(f"Job {job_id} stopped after going terminal elsewhere: {message}")
            return
        try:
            await self.store.fail_job(job_id, message)
        except (InvalidTransitionError, JobNotFoundError) as e:
            logger.info(f"Job {job_id} not marked failed: {e}")
            return
        log_service.log_research_step(job_id, "job", "failed", {"error": message})
        self.event_bus.publish(streaming.research_failed(job_id, message))

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel a live job. False when the job is unknown or already terminal."""
        job = await self.store.get_job(job_id)
        if job is None or job.is_terminal:
            return False
        try:
            await self.store.update_status(job_id, JobStatus.CANCELLED)
        except InvalidTransitionError:
            return False
        if job_id in self._queue:
            self._queue.remove(job_id)
        self.event_bus.publish(streaming.research_cancelled(job_id))
        log_service.log_research_step(job_id, "job", "cancelled")
        return True

    async def get_queue_summary(self) -> dict[str, int]:
        return await self.store.get_queue_summary()

    async def expire_stale_jobs(self, now: datetime | None = None) -> list[str]:
        expired: list[str] = []
        for job in await self.store.get_expired_jobs(now):
            try:
                await self.store.update_status(
                    job.id, JobStatus.EXPIRED, error_message="Job expired before completion"
                )
            except InvalidTransitionError:
                continue
            if job.id in self._queue:
                self._queue.remove(job.id)
            expired.append(job.id)
        if expired:
            logger.info(f"Expired {len(expired)} stale research jobs")
        return expired

    async def wait_idle(self) -> None:
        """Wait until the FIFO is empty and no job task is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        self._closed = True
        if self._queue:
            logger.info(f"Shutting down with {len(self._queue)} queued jobs left pending")
            self._queue.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def build_default_queue(
    store: JobStore | None = None, event_bus: EventBus | None = None
) -> ResearchQueueService:
    """Wire the queue against the configured model router, knowledge index and web search."""
    from app.llm_client import client as llm_client
    from app.services.job_store import get_job_store
    from app.services.knowledge_store import get_knowledge_store
    from app.tools.search_provider import ProviderWebSearch

    router = llm_client()
    return ResearchQueueService(
        store or get_job_store(),
        decomposition=DecompositionWorker(router),
        retrieval=RetrievalWorker(get_knowledge_store(), ProviderWebSearch()),
        scoring=ScoringWorker(router),
        synthesis=SynthesisWorker(router),
        event_bus=event_bus or EventBus(),
    )
