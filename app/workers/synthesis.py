from __future__ import annotations

from typing import Sequence

from app.config import settings
from app.llm_client import ModelRouter
from app.models.evidence import (
    EvidenceItem,
    JobConfidence,
    ScoredClaim,
    StageOutcome,
    SynthesisOutput,
)
from app.services.logger import logger
from app.services.prompt_store import render_prompt, stage_messages
from app.workers.base import BaseWorker

NO_SOURCES = "No sources available."
NO_CLAIMS = "No claims extracted."


def confidence_percent(confidence: float) -> int:
    """Whole percent, halves rounded up."""
    return int(confidence * 100 + 0.5)


def format_citations(sources: Sequence[EvidenceItem]) -> str:
    lines = []
    for number, source in enumerate(sources, start=1):
        label = source.title or source.url or source.id or "Untitled"
        url = f" {source.url}" if source.url and source.url != label else ""
        lines.append(f"[{number}] {label}{url} (score: {(source.composite or 0.0):.2f})")
    return "\n".join(lines) or NO_SOURCES


def format_claims(claims: Sequence[ScoredClaim]) -> str:
    lines = []
    for claim in claims:
        line = f"- {claim.text} (confidence: {claim.confidence_score:.2f})"
        if claim.contradiction_flag:
            line += " [CONTRADICTION DETECTED]"
        lines.append(line)
    return "\n".join(lines) or NO_CLAIMS


class SynthesisWorker(BaseWorker):
    """Writes the final cited markdown report from scored sources and claims."""

    name = "synthesis"
    temperature = 0.4

    def __init__(self, router: ModelRouter, *, timeout_s: float | None = None):
        super().__init__(router, timeout_s=timeout_s or settings.synthesis_timeout_seconds)

    def build_messages(
        self,
        query: str,
        sources: Sequence[EvidenceItem],
        claims: Sequence[ScoredClaim],
        confidence: JobConfidence,
    ) -> list[dict[str, str]]:
        note = (
            render_prompt("synthesis.contradiction_note") if confidence.has_contradictions else ""
        )
        return stage_messages(
            "synthesis",
            query=query,
            source_count=len(sources),
            source_citations=format_citations(sources),
            claims_block=format_claims(claims),
            confidence_percent=confidence_percent(confidence.confidence),
            contradiction_note=note,
        )

    async def execute(
        self,
        query: str,
        sources: Sequence[EvidenceItem],
        claims: Sequence[ScoredClaim],
        confidence: JobConfidence,
    ) -> StageOutcome[SynthesisOutput]:
        try:
            completion = await self.complete(
                self.build_messages(query, sources, claims, confidence),
                temperature=self.temperature,
            )
        except Exception as e:
            logger.warning(f"Synthesis failed, returning placeholder report: {e}")
            return StageOutcome.fallback(
                SynthesisOutput(synthesis=f"Synthesis failed: {e}", token_usage={}, error=str(e)),
                e,
            )
        return StageOutcome.ok(
            SynthesisOutput(
                synthesis=completion.content,
                token_usage=completion.usage.to_dict(),
            )
        )
