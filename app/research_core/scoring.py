"""Deterministic scoring for sources, claims, and whole jobs.

Pure functions only: no I/O, no clock reads except the optional ``now``
default in recency scoring.
"""
from __future__ import annotations

import math
from datetime import UTC, date, datetime
from typing import Any, Iterable, Sequence

from app.models.evidence import ClaimScore, CredibilityTier, JobConfidence, SourceScore

CREDIBILITY_TIERS: dict[str, float] = {
    CredibilityTier.PRIMARY_SOURCE.value: 1.0,
    CredibilityTier.AUTHORITATIVE.value: 0.85,
    CredibilityTier.SECONDARY.value: 0.65,
    CredibilityTier.UNVERIFIED.value: 0.3,
    CredibilityTier.FLAGGED.value: 0.0,
}

WEIGHTS: dict[str, float] = {
    "domain_authority": 0.25,
    "recency_score": 0.20,
    "relevance_score": 0.35,
    "credibility_score": 0.20,
}

DEFAULT_DOMAIN_AUTHORITY = 50.0
UNKNOWN_RECENCY = 0.5
RECENCY_DECAY_DAYS = 180.0
CORROBORATION_BONUS = 0.05
CONTRADICTION_PENALTY = 0.15
FULL_CONFIDENCE_SOURCE_COUNT = 10


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _parse_published_at(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class SourceScorer:
    """Blend four normalized signals into one composite score per source."""

    def score_source(
        self,
        *,
        domain_authority: float | None = None,
        published_at: Any = None,
        relevance_score: float = 0.0,
        credibility_tier: str | None = None,
        now: datetime | None = None,
    ) -> SourceScore:
        da = self.domain_authority(domain_authority)
        rec = self.recency_score(published_at, now=now)
        rel = clamp(float(relevance_score or 0.0))
        cred = self.credibility_score(credibility_tier)
        return SourceScore(
            domain_authority=da,
            recency_score=rec,
            relevance_score=rel,
            credibility_score=cred,
            composite=self.composite(da, rec, rel, cred),
        )

    @staticmethod
    def domain_authority(value: Any) -> float:
        """Clamp to 0-100; 50 when missing or not a number."""
        if isinstance(value, bool):
            return DEFAULT_DOMAIN_AUTHORITY
        try:
            number = float(value)
        except (TypeError, ValueError):
            return DEFAULT_DOMAIN_AUTHORITY
        if math.isnan(number):
            return DEFAULT_DOMAIN_AUTHORITY
        return clamp(number, 0.0, 100.0)

    @staticmethod
    def recency_score(published_at: Any, *, now: datetime | None = None) -> float:
        """Exponential decay, ~0.37 at 180 days. 0.5 for a missing or unparseable date."""
        published = _parse_published_at(published_at)
        if published is None:
            return UNKNOWN_RECENCY
        reference = now or datetime.now(UTC)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=UTC)
        days_since = (reference - published).total_seconds() / 86400.0
        return min(math.exp(-days_since / RECENCY_DECAY_DAYS), 1.0)

    @staticmethod
    def credibility_score(tier: Any) -> float:
        if isinstance(tier, str) and tier in CREDIBILITY_TIERS:
            return CREDIBILITY_TIERS[tier]
        return CREDIBILITY_TIERS[CredibilityTier.UNVERIFIED.value]

    @staticmethod
    def composite(
        domain_authority: float,
        recency_score: float,
        relevance_score: float,
        credibility_score: float,
    ) -> float:
        raw = (
            (domain_authority / 100.0) * WEIGHTS["domain_authority"]
            + recency_score * WEIGHTS["recency_score"]
            + relevance_score * WEIGHTS["relevance_score"]
            + credibility_score * WEIGHTS["credibility_score"]
        )
        return clamp(raw)


class ClaimScorer:
    def score_claim(
        self,
        supporting_composites: Sequence[float],
        contradicting_composites: Sequence[float] = (),
    ) -> ClaimScore:
        support_strength = (
            sum(supporting_composites) / len(supporting_composites)
            if supporting_composites
            else 0.0
        )
        base = min(support_strength + CORROBORATION_BONUS * len(supporting_composites), 1.0)
        confidence = clamp(base - CONTRADICTION_PENALTY * len(contradicting_composites))
        return ClaimScore(
            support_strength=support_strength,
            contradiction_flag=len(contradicting_composites) > 0,
            confidence_score=confidence,
        )


def source_count_multiplier(count: int) -> float:
    """Linear ramp: 0 at no sources, 1.0 from ten sources upward."""
    return min(max(count, 0) / FULL_CONFIDENCE_SOURCE_COUNT, 1.0)


class JobConfidenceCalculator:
    def calculate_job_confidence(self, claims: Iterable[Any], source_count: int) -> JobConfidence:
        """Aggregate claim confidences, damped by how many sources backed the run.

        ``claims`` only needs ``confidence_score`` and ``contradiction_flag``
        attributes.
        """
        claims = list(claims)
        if not claims:
            return JobConfidence(
                confidence=0.0,
                claim_count=0,
                source_count=source_count,
                has_contradictions=False,
            )
        mean_confidence = sum(float(c.confidence_score) for c in claims) / len(claims)
        return JobConfidence(
            confidence=clamp(mean_confidence * source_count_multiplier(source_count)),
            claim_count=len(claims),
            source_count=source_count,
            has_contradictions=any(bool(c.contradiction_flag) for c in claims),
        )
