from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from app.models.errors import InvalidTransitionError


class JobStatus(StrEnum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    SYNTHESIZING = "SYNTHESIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class Stage(StrEnum):
    DECOMPOSITION = "decomposition"
    RETRIEVAL = "retrieval"
    SCORING = "scoring"
    SYNTHESIS = "synthesis"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.EXPIRED}
)

# Forward-only lifecycle. SYNTHESIZING is informational, so PROCESSING may
# finish directly. Cancellation and expiry are reachable from any live state.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset(
        {JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.EXPIRED}
    ),
    JobStatus.PROCESSING: frozenset(
        {
            JobStatus.SYNTHESIZING,
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
            JobStatus.EXPIRED,
        }
    ),
    JobStatus.SYNTHESIZING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.EXPIRED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
    JobStatus.EXPIRED: frozenset(),
}


def is_terminal(status: JobStatus | str) -> bool:
    return JobStatus(status) in TERMINAL_STATUSES


def can_transition(current: JobStatus | str, target: JobStatus | str) -> bool:
    return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(current)]


def ensure_transition(current: JobStatus | str, target: JobStatus | str) -> JobStatus:
    """Validate a status change and return the target status.

    Raises InvalidTransitionError for backward moves and for any write to a
    terminal job.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(str(current), str(target))
    return JobStatus(target)


class JobSpec(BaseModel):
    """What a caller submits: the query plus optional routing metadata."""

    query: str
    user_id: str | None = None
    scope_id: str | None = None
    ttl_seconds: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ResearchJob(BaseModel):
    id: str
    query: str
    status: JobStatus = JobStatus.QUEUED
    current_stage: Stage | None = None
    stage_progress: int = 0
    query_decomposition: list[str] = Field(default_factory=list)
    confidence_score: float | None = None
    source_count: int = 0
    has_contradictions: bool = False
    result_id: str | None = None
    error_message: str | None = None
    scope_id: str | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    ttl_seconds: int = 86400
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    expires_at: datetime

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def retrieval_scope(self) -> str:
        return self.scope_id or self.id


class ResearchResult(BaseModel):
    id: str
    job_id: str
    synthesis: str = ""
    sources: list[dict[str, Any]] = Field(default_factory=list)
    claims: list[dict[str, Any]] = Field(default_factory=list)
    evidence_set: list[dict[str, Any]] = Field(default_factory=list)
    token_usage: dict[str, Any] = Field(default_factory=dict)
    synthesis_error: str | None = None
    created_at: datetime


class SourceRecord(BaseModel):
    id: str
    job_id: str
    url: str = ""
    title: str = ""
    content_preview: str = ""
    domain_authority: float = 50
    recency_score: float = 0.0
    relevance_score: float = 0.0
    credibility_tier: str = "UNVERIFIED"
    composite_score: float = 0.0
    retrieval_method: str = "rag"
    created_at: datetime
