from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sse_starlette.sse import EventSourceResponse

from app.api.deps import get_queue
from app.models.jobs import JobSpec, JobStatus, ResearchJob, ResearchResult, SourceRecord
from app.models.schemas import (
    CancelResponse,
    JobListResponse,
    QueueSummaryResponse,
    ResearchJobRequest,
)
from app.services import logger as log_service
from app.services.queue_service import ResearchQueueService

router = APIRouter(prefix="/api/research", tags=["research"])


async def _require_job(queue: ResearchQueueService, job_id: str) -> ResearchJob:
    job = await queue.store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/jobs", response_model=ResearchJob, status_code=202)
async def submit_job(
    request: ResearchJobRequest, queue: ResearchQueueService = Depends(get_queue)
):
    """Queue a research job. Processing starts as soon as a slot is free."""
    return await queue.submit_job(JobSpec(**request.model_dump()))


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    status: JobStatus | None = None,
    user_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    queue: ResearchQueueService = Depends(get_queue),
):
    jobs = await queue.store.list_jobs(user_id=user_id, status=status, limit=limit)
    return JobListResponse(jobs=jobs, status=status)


@router.get("/jobs/{job_id}", response_model=ResearchJob)
async def get_job(job_id: str, queue: ResearchQueueService = Depends(get_queue)):
    return await _require_job(queue, job_id)


@router.get("/jobs/{job_id}/result", response_model=ResearchResult)
async def get_result(job_id: str, queue: ResearchQueueService = Depends(get_queue)):
    job = await _require_job(queue, job_id)
    result = await queue.store.get_result(job_id) if job.status == JobStatus.COMPLETED else None
    if result is None:
        raise HTTPException(status_code=404, detail="Result not available yet")
    return result


@router.get("/jobs/{job_id}/sources", response_model=list[SourceRecord])
async def get_sources(job_id: str, queue: ResearchQueueService = Depends(get_queue)):
    await _require_job(queue, job_id)
    return await queue.store.get_sources_for_job(job_id)


@router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(job_id: str, queue: ResearchQueueService = Depends(get_queue)):
    job = await _require_job(queue, job_id)
    if job.is_terminal or not await queue.cancel_job(job_id):
        raise HTTPException(status_code=409, detail="Job is already finished")
    return CancelResponse(job_id=job_id, cancelled=True)


@router.get("/queue/summary", response_model=QueueSummaryResponse)
async def queue_summary(queue: ResearchQueueService = Depends(get_queue)):
    return QueueSummaryResponse(
        counts=await queue.get_queue_summary(),
        queue_length=queue.queue_length,
        active_count=queue.active_count,
        max_concurrency=queue.max_concurrency,
    )


@router.get("/events")
async def stream_events(request: Request, queue: ResearchQueueService = Depends(get_queue)):
    """SSE stream of research lifecycle events for every job."""
    subscription = queue.event_bus.subscribe()

    async def event_generator():
        log_service.log_event(event_type="sse_connected", message="Event stream opened")
        with subscription:
            async for event in subscription:
                if await request.is_disconnected():
                    break
                yield event.to_sse()
        log_service.log_event(
            event_type="sse_disconnected",
            message="Event stream closed",
            dropped=subscription.dropped,
        )

    return EventSourceResponse(event_generator())
