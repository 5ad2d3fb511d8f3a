from __future__ import annotations

from app.models.events import EventType, ResearchEvent
from app.models.jobs import ResearchJob, Stage


def research_queued(job: ResearchJob) -> ResearchEvent:
    return ResearchEvent(
        event=EventType.QUEUED,
        data={
            "job_id": job.id,
            "query": job.query,
            "status": job.status.value,
            "created_at": job.created_at.isoformat(),
        },
    )


def research_progress(job_id: str, stage: Stage, progress: int) -> ResearchEvent:
    return ResearchEvent(
        event=EventType.PROGRESS,
        data={"job_id": job_id, "stage": stage.value, "progress": progress},
    )


def research_completed(
    job_id: str,
    confidence_score: float,
    *,
    result_id: str,
    source_count: int,
    has_contradictions: bool,
) -> ResearchEvent:
    return ResearchEvent(
        event=EventType.COMPLETED,
        data={
            "job_id": job_id,
            "confidence_score": confidence_score,
            "result_id": result_id,
            "source_count": source_count,
            "has_contradictions": has_contradictions,
        },
    )


def research_failed(job_id: str, error: str) -> ResearchEvent:
    return ResearchEvent(event=EventType.FAILED, data={"job_id": job_id, "error": error})


def research_cancelled(job_id: str) -> ResearchEvent:
    return ResearchEvent(event=EventType.CANCELLED, data={"job_id": job_id})
