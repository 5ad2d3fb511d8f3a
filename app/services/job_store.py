"""Job, result, and source persistence.

``JobStore`` is the only source of truth for job state. Every store validates
status writes through ``ensure_transition`` so a terminal job can never be
overwritten, whichever path tries.
"""
from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from app.config import settings
from app.models.errors import InvalidTransitionError, JobNotFoundError
from app.models.jobs import (
    JobSpec,
    JobStatus,
    ResearchJob,
    ResearchResult,
    SourceRecord,
    Stage,
    ensure_transition,
    is_terminal,
)
from app.services import logger as log_service

CONTENT_PREVIEW_CHARS = 500


class JobStore(Protocol):
    async def create_job(self, spec: JobSpec) -> ResearchJob: ...
    async def get_job(self, job_id: str) -> ResearchJob | None: ...
    async def list_jobs(
        self, *, user_id: str | None = None, status: JobStatus | None = None, limit: int = 50
    ) -> list[ResearchJob]: ...
    async def update_status(
        self, job_id: str, status: JobStatus, *, error_message: str | None = None
    ) -> ResearchJob: ...
    async def update_stage_progress(self, job_id: str, stage: Stage, progress: int) -> None: ...
    async def set_query_decomposition(self, job_id: str, sub_questions: list[str]) -> None: ...
    async def complete_job(
        self,
        job_id: str,
        *,
        result_id: str,
        confidence_score: float,
        source_count: int,
        has_contradictions: bool,
    ) -> ResearchJob: ...
    async def fail_job(self, job_id: str, error_message: str) -> ResearchJob: ...
    async def save_result(self, **payload: Any) -> str: ...
    async def get_result(self, job_id: str) -> ResearchResult | None: ...
    async def add_source(self, **payload: Any) -> str: ...
    async def get_sources_for_job(self, job_id: str) -> list[SourceRecord]: ...
    async def get_expired_jobs(self, now: datetime | None = None) -> list[ResearchJob]: ...
    async def get_queue_summary(self) -> dict[str, int]: ...


def empty_summary() -> dict[str, int]:
    summary = {status.value: 0 for status in JobStatus}
    summary["total"] = 0
    return summary


def _now() -> datetime:
    return datetime.now(UTC)


class InMemoryJobStore:
    """Dict-backed store for a single event loop.

    None of the methods await internally, so each call runs to completion
    without interleaving and every update is atomic with respect to other
    coroutines.
    """

    def __init__(self, default_ttl_seconds: int | None = None):
        self.default_ttl_seconds = default_ttl_seconds or int(settings.job_default_ttl_seconds)
        self._jobs: dict[str, ResearchJob] = {}
        self._results: dict[str, ResearchResult] = {}
        self._sources: dict[str, list[SourceRecord]] = {}

    def _require(self, job_id: str) -> ResearchJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _require_live(self, job_id: str) -> ResearchJob:
        job = self._require(job_id)
        if is_terminal(job.status):
            raise InvalidTransitionError(job.status.value, job.status.value)
        return job

    async def create_job(self, spec: JobSpec) -> ResearchJob:
        now = _now()
        ttl = int(spec.ttl_seconds or self.default_ttl_seconds)
        job = ResearchJob(
            id=str(uuid.uuid4()),
            query=spec.query,
            scope_id=spec.scope_id,
            user_id=spec.user_id,
            metadata=dict(spec.metadata),
            ttl_seconds=ttl,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        self._jobs[job.id] = job
        log_service.log_db_operation("insert", "research_jobs", "success", details=job.id)
        return job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> ResearchJob | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(
        self, *, user_id: str | None = None, status: JobStatus | None = None, limit: int = 50
    ) -> list[ResearchJob]:
        jobs = [
            job
            for job in self._jobs.values()
            if (user_id is None or job.user_id == user_id)
            and (status is None or job.status == status)
        ]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return [job.model_copy(deep=True) for job in jobs[: max(limit, 0)]]

    async def update_status(
        self, job_id: str, status: JobStatus, *, error_message: str | None = None
    ) -> ResearchJob:
        job = self._require(job_id)
        job.status = ensure_transition(job.status, status)
        if error_message is not None:
            job.error_message = error_message
        job.updated_at = _now()
        return job.model_copy(deep=True)

    async def update_stage_progress(self, job_id: str, stage: Stage, progress: int) -> None:
        job = self._require_live(job_id)
        job.current_stage = stage
        job.stage_progress = max(0, min(100, int(progress)))
        job.updated_at = _now()

    async def set_query_decomposition(self, job_id: str, sub_questions: list[str]) -> None:
        job = self._require_live(job_id)
        job.query_decomposition = list(sub_questions)
        job.updated_at = _now()

    async def complete_job(
        self,
        job_id: str,
        *,
        result_id: str,
        confidence_score: float,
        source_count: int,
        has_contradictions: bool,
    ) -> ResearchJob:
        job = self._require(job_id)
        job.status = ensure_transition(job.status, JobStatus.COMPLETED)
        job.result_id = result_id
        job.confidence_score = float(confidence_score or 0.0)
        job.source_count = int(source_count or 0)
        job.has_contradictions = bool(has_contradictions)
        job.completed_at = job.updated_at = _now()
        return job.model_copy(deep=True)

    async def fail_job(self, job_id: str, error_message: str) -> ResearchJob:
        return await self.update_status(job_id, JobStatus.FAILED, error_message=error_message)

    async def save_result(self, **payload: Any) -> str:
        self._require_live(payload["job_id"])
        result = ResearchResult(id=str(uuid.uuid4()), created_at=_now(), **payload)
        self._results[result.job_id] = result
        log_service.log_db_operation("insert", "research_results", "success", details=result.id)
        return result.id

    async def get_result(self, job_id: str) -> ResearchResult | None:
        result = self._results.get(job_id)
        return result.model_copy(deep=True) if result else None

    async def add_source(self, **payload: Any) -> str:
        payload["content_preview"] = (payload.get("content_preview") or "")[:CONTENT_PREVIEW_CHARS]
        record = SourceRecord(id=str(uuid.uuid4()), created_at=_now(), **payload)
        self._sources.setdefault(record.job_id, []).append(record)
        return record.id

    async def get_sources_for_job(self, job_id: str) -> list[SourceRecord]:
        sources = sorted(
            self._sources.get(job_id, []),
            key=lambda record: record.composite_score,
            reverse=True,
        )
        return [record.model_copy(deep=True) for record in sources]

    async def get_expired_jobs(self, now: datetime | None = None) -> list[ResearchJob]:
        cutoff = now or _now()
        return [
            job.model_copy(deep=True)
            for job in self._jobs.values()
            if job.expires_at < cutoff and not is_terminal(job.status)
        ]

    async def get_queue_summary(self) -> dict[str, int]:
        summary = empty_summary()
        for job in self._jobs.values():
            summary[job.status.value] += 1
            summary["total"] += 1
        return summary


_store: JobStore | None = None


def get_job_store() -> JobStore:
    global _store
    if _store is None:
        backend = settings.job_store_backend.lower().strip()
        if backend == "memory":
            _store = InMemoryJobStore()
        elif backend == "postgres":
            from app.services.database import PostgresJobStore

            _store = PostgresJobStore(settings.database_url)
        else:
            raise ValueError(f"Unsupported JOB_STORE_BACKEND: {settings.job_store_backend}")
    return _store
