from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any, Sequence

from app.config import settings
from app.llm_client import ModelRouter
from app.models.evidence import (
    CredibilityTier,
    EvidenceItem,
    ScoredClaim,
    ScoringOutput,
    StageOutcome,
)
from app.research_core.scoring import (
    CREDIBILITY_TIERS,
    ClaimScorer,
    JobConfidenceCalculator,
    SourceScorer,
    clamp,
)
from app.services.logger import logger
from app.services.prompt_store import stage_messages
from app.workers.base import BaseWorker

SOURCE_TEXT_CHARS = 1200


def _valid_indices(raw: Any, size: int) -> list[int]:
    if not isinstance(raw, list):
        return []
    indices: list[int] = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, int):
            continue
        if 0 <= value < size and value not in indices:
            indices.append(value)
    return indices


class ScoringWorker(BaseWorker):
    """Scores sources, extracts claims with one LLM call, and rolls up job confidence."""

    name = "scoring"

    def __init__(
        self,
        router: ModelRouter,
        *,
        source_scorer: SourceScorer | None = None,
        claim_scorer: ClaimScorer | None = None,
        confidence_calculator: JobConfidenceCalculator | None = None,
        timeout_s: float | None = None,
    ):
        super().__init__(router, timeout_s=timeout_s or settings.scoring_timeout_seconds)
        self.source_scorer = source_scorer or SourceScorer()
        self.claim_scorer = claim_scorer or ClaimScorer()
        self.confidence_calculator = confidence_calculator or JobConfidenceCalculator()

    def score_sources(
        self, sources: Sequence[EvidenceItem], *, now: datetime | None = None
    ) -> list[EvidenceItem]:
        scored: list[EvidenceItem] = []
        for source in sources:
            tier = source.credibility_tier or source.metadata.get("credibility_tier")
            authority = source.domain_authority
            if authority is None:
                authority = source.metadata.get("domain_authority")
            score = self.source_scorer.score_source(
                domain_authority=authority,
                published_at=source.published_at,
                relevance_score=clamp(source.raw_score),
                credibility_tier=tier,
                now=now,
            )
            scored.append(
                dataclasses.replace(
                    source,
                    domain_authority=score.domain_authority,
                    recency_score=score.recency_score,
                    relevance_score=score.relevance_score,
                    credibility_tier=(
                        tier
                        if isinstance(tier, str) and tier in CREDIBILITY_TIERS
                        else CredibilityTier.UNVERIFIED.value
                    ),
                    credibility_score=score.credibility_score,
                    composite=score.composite,
                )
            )
        return scored

    async def extract_claims(self, query: str, sources: Sequence[EvidenceItem]) -> list[dict]:
        listing = "\n".join(
            f"[{index}] {source.text[:SOURCE_TEXT_CHARS]}" for index, source in enumerate(sources)
        )
        completion = await self.complete(
            stage_messages("scoring", query=query, sources=listing),
            temperature=0.2,
        )
        return [item for item in self.parse_json_array(completion.content) if isinstance(item, dict)]

    def score_claims(
        self, raw_claims: list[dict], sources: Sequence[EvidenceItem]
    ) -> list[ScoredClaim]:
        scored: list[ScoredClaim] = []
        for raw in raw_claims:
            text = raw.get("text")
            if not isinstance(text, str) or not text.strip():
                continue
            supporting = [sources[i] for i in _valid_indices(raw.get("supportingIndices"), len(sources))]
            contradicting = [
                sources[i] for i in _valid_indices(raw.get("contradictingIndices"), len(sources))
            ]
            score = self.claim_scorer.score_claim(
                [s.composite or 0.0 for s in supporting],
                [s.composite or 0.0 for s in contradicting],
            )
            scored.append(
                ScoredClaim(
                    text=text.strip(),
                    supporting_sources=supporting,
                    contradicting_sources=contradicting,
                    support_strength=score.support_strength,
                    contradiction_flag=score.contradiction_flag,
                    confidence_score=score.confidence_score,
                )
            )
        return scored

    async def execute(
        self, sources: Sequence[EvidenceItem], query: str
    ) -> StageOutcome[ScoringOutput]:
        scored_sources = self.score_sources(sources)
        try:
            raw_claims = await self.extract_claims(query, scored_sources)
        except Exception as e:
            logger.warning(f"Claim extraction failed; continuing without claims: {e}")
            return StageOutcome.fallback(
                ScoringOutput(
                    scored_sources=scored_sources,
                    scored_claims=[],
                    job_confidence=self.confidence_calculator.calculate_job_confidence(
                        [], len(sources)
                    ),
                ),
                e,
            )

        scored_claims = self.score_claims(raw_claims, scored_sources)
        return StageOutcome.ok(
            ScoringOutput(
                scored_sources=scored_sources,
                scored_claims=scored_claims,
                job_confidence=self.confidence_calculator.calculate_job_confidence(
                    scored_claims, len(sources)
                ),
            )
        )

