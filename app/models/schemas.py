from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from app.models.jobs import JobStatus, ResearchJob


# --- Requests ---


class ResearchJobRequest(BaseModel):
    query: str = Field(min_length=3, max_length=2000)
    user_id: str | None = None
    scope_id: str | None = None
    ttl_seconds: int | None = Field(default=None, ge=60, le=7 * 86400)
    metadata: dict[str, Any] = Field(default_factory=dict)


# --- Responses ---


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool


class QueueSummaryResponse(BaseModel):
    counts: dict[str, int]
    queue_length: int
    active_count: int
    max_concurrency: int


class JobListResponse(BaseModel):
    jobs: list[ResearchJob]
    status: JobStatus | None = None
