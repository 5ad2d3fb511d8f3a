"""PostgreSQL job store using asyncpg."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import asyncpg

from app.config import settings
from app.models.errors import InvalidTransitionError, JobNotFoundError
from app.models.jobs import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    JobSpec,
    JobStatus,
    ResearchJob,
    ResearchResult,
    SourceRecord,
    Stage,
)
from app.services import logger as log_service
from app.services.job_store import CONTENT_PREVIEW_CHARS, empty_summary

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS research_jobs (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    query TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'QUEUED',
    current_stage TEXT,
    stage_progress INTEGER NOT NULL DEFAULT 0,
    query_decomposition JSONB NOT NULL DEFAULT '[]',
    confidence_score DOUBLE PRECISION,
    source_count INTEGER NOT NULL DEFAULT 0,
    has_contradictions BOOLEAN NOT NULL DEFAULT FALSE,
    result_id TEXT,
    error_message TEXT,
    scope_id TEXT,
    metadata JSONB NOT NULL DEFAULT '{}',
    ttl_seconds INTEGER NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    completed_at TIMESTAMPTZ,
    expires_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS research_jobs_status_idx ON research_jobs (status);

CREATE TABLE IF NOT EXISTS research_results (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL UNIQUE REFERENCES research_jobs(id) ON DELETE CASCADE,
    synthesis TEXT NOT NULL DEFAULT '',
    sources JSONB NOT NULL DEFAULT '[]',
    claims JSONB NOT NULL DEFAULT '[]',
    evidence_set JSONB NOT NULL DEFAULT '[]',
    token_usage JSONB NOT NULL DEFAULT '{}',
    synthesis_error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS research_sources (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES research_jobs(id) ON DELETE CASCADE,
    url TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL DEFAULT '',
    content_preview TEXT NOT NULL DEFAULT '',
    domain_authority DOUBLE PRECISION NOT NULL DEFAULT 50,
    recency_score DOUBLE PRECISION NOT NULL DEFAULT 0,
    relevance_score DOUBLE PRECISION NOT NULL DEFAULT 0,
    credibility_tier TEXT NOT NULL DEFAULT 'UNVERIFIED',
    composite_score DOUBLE PRECISION NOT NULL DEFAULT 0,
    retrieval_method TEXT NOT NULL DEFAULT 'rag',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS research_sources_job_idx ON research_sources (job_id);
"""

JOB_COLUMNS = """
    id, user_id, query, status, current_stage, stage_progress, query_decomposition,
    confidence_score, source_count, has_contradictions, result_id, error_message,
    scope_id, metadata, ttl_seconds, created_at, updated_at, completed_at, expires_at
"""

LIVE_STATUSES = [s.value for s in JobStatus if s not in TERMINAL_STATUSES]


def _sources_allowing(target: JobStatus) -> list[str]:
    return [src.value for src, targets in ALLOWED_TRANSITIONS.items() if target in targets]


def _coerce_json(value: Any, default: Any) -> Any:
    """asyncpg hands JSONB back as text unless a codec is registered."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return default
    return default if value is None else value


def _job_from_row(row: asyncpg.Record) -> ResearchJob:
    data = dict(row)
    data["query_decomposition"] = _coerce_json(data.get("query_decomposition"), [])
    data["metadata"] = _coerce_json(data.get("metadata"), {})
    return ResearchJob(**data)


async def _reject_write(conn: asyncpg.Connection, job_id: str) -> None:
    """Raise for a guarded write that matched no live job."""
    current = await conn.fetchval("SELECT status FROM research_jobs WHERE id = $1", job_id)
    if current is None:
        raise JobNotFoundError(job_id)
    raise InvalidTransitionError(current, current)


class PostgresJobStore:
    def __init__(self, database_url: str, *, default_ttl_seconds: int | None = None):
        if not database_url:
            raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
        self.database_url = database_url
        self.default_ttl_seconds = default_ttl_seconds or int(settings.job_default_ttl_seconds)
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(self.database_url, min_size=1, max_size=10)
        return self._pool

    async def init_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        log_service.log_db_operation("migrate", "research_*", "success")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    # --- Jobs ---

    async def create_job(self, spec: JobSpec) -> ResearchJob:
        pool = await self._get_pool()
        ttl = int(spec.ttl_seconds or self.default_ttl_seconds)
        now = datetime.now(UTC)
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO research_jobs
                    (id, user_id, query, scope_id, metadata, ttl_seconds, created_at, updated_at, expires_at)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $7, $8)
                RETURNING {JOB_COLUMNS}
                """,
                str(uuid.uuid4()),
                spec.user_id,
                spec.query,
                spec.scope_id,
                json.dumps(spec.metadata),
                ttl,
                now,
                now + timedelta(seconds=ttl),
            )
        log_service.log_db_operation("insert", "research_jobs", "success", details=row["id"])
        return _job_from_row(row)

    async def get_job(self, job_id: str) -> ResearchJob | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {JOB_COLUMNS} FROM research_jobs WHERE id = $1", job_id
            )
        return _job_from_row(row) if row else None

    async def list_jobs(
        self, *, user_id: str | None = None, status: JobStatus | None = None, limit: int = 50
    ) -> list[ResearchJob]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {JOB_COLUMNS} FROM research_jobs
                WHERE ($1::text IS NULL OR user_id = $1)
                  AND ($2::text IS NULL OR status = $2)
                ORDER BY created_at DESC
                LIMIT $3
                """,
                user_id,
                status.value if status else None,
                limit,
            )
        return [_job_from_row(row) for row in rows]

    async def _transition(
        self, job_id: str, target: JobStatus, set_clause: str = "", *args: Any
    ) -> ResearchJob:
        """Single-statement guarded transition: the WHERE clause enforces the state machine."""
        pool = await self._get_pool()
        extra = f", {set_clause}" if set_clause else ""
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE research_jobs
                SET status = $2, updated_at = now(){extra}
                WHERE id = $1 AND status = ANY($3::text[])
                RETURNING {JOB_COLUMNS}
                """,
                job_id,
                target.value,
                _sources_allowing(target),
                *args,
            )
            if row is not None:
                return _job_from_row(row)
            current = await conn.fetchval("SELECT status FROM research_jobs WHERE id = $1", job_id)
        if current is None:
            raise JobNotFoundError(job_id)
        raise InvalidTransitionError(current, target.value)

    async def update_status(
        self, job_id: str, status: JobStatus, *, error_message: str | None = None
    ) -> ResearchJob:
        if error_message is not None:
            return await self._transition(job_id, status, "error_message = $4", error_message)
        return await self._transition(job_id, status)

    async def _update_live(self, job_id: str, set_clause: str, *args: Any) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                f"""
                UPDATE research_jobs SET {set_clause}, updated_at = now()
                WHERE id = $1 AND status = ANY($2::text[])
                """,
                job_id,
                LIVE_STATUSES,
                *args,
            )
            if result.endswith(" 0"):
                await _reject_write(conn, job_id)

    async def update_stage_progress(self, job_id: str, stage: Stage, progress: int) -> None:
        await self._update_live(
            job_id,
            "current_stage = $3, stage_progress = $4",
            stage.value,
            max(0, min(100, int(progress))),
        )

    async def set_query_decomposition(self, job_id: str, sub_questions: list[str]) -> None:
        await self._update_live(job_id, "query_decomposition = $3::jsonb", json.dumps(sub_questions))

    async def complete_job(
        self,
        job_id: str,
        *,
        result_id: str,
        confidence_score: float,
        source_count: int,
        has_contradictions: bool,
    ) -> ResearchJob:
        return await self._transition(
            job_id,
            JobStatus.COMPLETED,
            "result_id = $4, confidence_score = $5, source_count = $6, "
            "has_contradictions = $7, completed_at = now()",
            result_id,
            float(confidence_score or 0.0),
            int(source_count or 0),
            bool(has_contradictions),
        )

    async def fail_job(self, job_id: str, error_message: str) -> ResearchJob:
        return await self.update_status(job_id, JobStatus.FAILED, error_message=error_message)

    # --- Results ---

    async def save_result(self, **payload: Any) -> str:
        pool = await self._get_pool()
        result_id = str(uuid.uuid4())
        async with pool.acquire() as conn:
            status = await conn.execute(
                """
                INSERT INTO research_results
                    (id, job_id, synthesis, sources, claims, evidence_set, token_usage, synthesis_error)
                SELECT $1::text, $2::text, $3::text, $4::jsonb, $5::jsonb, $6::jsonb, $7::jsonb, $8::text
                WHERE EXISTS (
                    SELECT 1 FROM research_jobs WHERE id = $2 AND status = ANY($9::text[])
                )
                """,
                result_id,
                payload["job_id"],
                payload.get("synthesis", ""),
                json.dumps(payload.get("sources", []), default=str),
                json.dumps(payload.get("claims", []), default=str),
                json.dumps(payload.get("evidence_set", []), default=str),
                json.dumps(payload.get("token_usage", {})),
                payload.get("synthesis_error"),
                LIVE_STATUSES,
            )
            if status.endswith(" 0"):
                await _reject_write(conn, payload["job_id"])
        log_service.log_db_operation("insert", "research_results", "success", details=result_id)
        return result_id

    async def get_result(self, job_id: str) -> ResearchResult | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, job_id, synthesis, sources, claims, evidence_set, token_usage,
                       synthesis_error, created_at
                FROM research_results WHERE job_id = $1
                """,
                job_id,
            )
        if not row:
            return None
        data = dict(row)
        for key in ("sources", "claims", "evidence_set"):
            data[key] = _coerce_json(data.get(key), [])
        data["token_usage"] = _coerce_json(data.get("token_usage"), {})
        return ResearchResult(**data)

    # --- Sources ---

    async def add_source(self, **payload: Any) -> str:
        pool = await self._get_pool()
        source_id = str(uuid.uuid4())
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_sources
                    (id, job_id, url, title, content_preview, domain_authority, recency_score,
                     relevance_score, credibility_tier, composite_score, retrieval_method)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                """,
                source_id,
                payload["job_id"],
                payload.get("url", ""),
                payload.get("title", ""),
                (payload.get("content_preview") or "")[:CONTENT_PREVIEW_CHARS],
                float(payload.get("domain_authority", 50)),
                float(payload.get("recency_score", 0.0)),
                float(payload.get("relevance_score", 0.0)),
                payload.get("credibility_tier", "UNVERIFIED"),
                float(payload.get("composite_score", 0.0)),
                payload.get("retrieval_method", "rag"),
            )
        return source_id

    async def get_sources_for_job(self, job_id: str) -> list[SourceRecord]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, job_id, url, title, content_preview, domain_authority, recency_score,
                       relevance_score, credibility_tier, composite_score, retrieval_method, created_at
                FROM research_sources WHERE job_id = $1
                ORDER BY composite_score DESC
                """,
                job_id,
            )
        return [SourceRecord(**dict(row)) for row in rows]

    # --- Maintenance ---

    async def get_expired_jobs(self, now: datetime | None = None) -> list[ResearchJob]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {JOB_COLUMNS} FROM research_jobs
                WHERE expires_at < $1 AND status = ANY($2::text[])
                """,
                now or datetime.now(UTC),
                LIVE_STATUSES,
            )
        return [_job_from_row(row) for row in rows]

    async def get_queue_summary(self) -> dict[str, int]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT status, COUNT(*) AS count FROM research_jobs GROUP BY status"
            )
        summary = empty_summary()
        for row in rows:
            summary[row["status"]] = int(row["count"])
            summary["total"] += int(row["count"])
        return summary
