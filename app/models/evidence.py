from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Generic, Literal, TypeVar

RetrievalMethod = Literal["rag", "web"]

T = TypeVar("T")


class CredibilityTier(StrEnum):
    PRIMARY_SOURCE = "PRIMARY_SOURCE"
    AUTHORITATIVE = "AUTHORITATIVE"
    SECONDARY = "SECONDARY"
    UNVERIFIED = "UNVERIFIED"
    FLAGGED = "FLAGGED"


@dataclass(slots=True)
class EvidenceItem:
    """One piece of retrieved evidence, enriched in place as it moves through the stages."""

    text: str
    retrieval_method: RetrievalMethod
    id: str | None = None
    url: str = ""
    title: str = ""
    raw_score: float = 0.0
    rrf_score: float = 0.0
    published_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    # Filled by the scoring stage.
    domain_authority: float | None = None
    recency_score: float | None = None
    relevance_score: float | None = None
    credibility_tier: str | None = None
    credibility_score: float | None = None
    composite: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SourceScore:
    domain_authority: float
    recency_score: float
    relevance_score: float
    credibility_score: float
    composite: float


@dataclass(slots=True)
class ClaimScore:
    support_strength: float
    contradiction_flag: bool
    confidence_score: float


@dataclass(slots=True)
class ScoredClaim:
    text: str
    supporting_sources: list[EvidenceItem] = field(default_factory=list)
    contradicting_sources: list[EvidenceItem] = field(default_factory=list)
    support_strength: float = 0.0
    contradiction_flag: bool = False
    confidence_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "supporting_source_ids": [s.id for s in self.supporting_sources],
            "contradicting_source_ids": [s.id for s in self.contradicting_sources],
            "support_strength": self.support_strength,
            "contradiction_flag": self.contradiction_flag,
            "confidence_score": self.confidence_score,
        }


@dataclass(slots=True)
class JobConfidence:
    confidence: float = 0.0
    claim_count: int = 0
    source_count: int = 0
    has_contradictions: bool = False


@dataclass(slots=True)
class ScoringOutput:
    scored_sources: list[EvidenceItem] = field(default_factory=list)
    scored_claims: list[ScoredClaim] = field(default_factory=list)
    job_confidence: JobConfidence = field(default_factory=JobConfidence)


@dataclass(slots=True)
class SynthesisOutput:
    synthesis: str
    token_usage: dict[str, int] = field(default_factory=dict)
    error: str | None = None


@dataclass(slots=True)
class StageOutcome(Generic[T]):
    """Result of one pipeline stage.

    ``degraded`` means the stage caught a soft failure and returned its safe
    default; the job keeps advancing. Hard failures are raised, not returned.
    """

    value: T
    degraded: bool = False
    error: str | None = None

    @classmethod
    def ok(cls, value: T) -> "StageOutcome[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, error: BaseException | str) -> "StageOutcome[T]":
        return cls(value=value, degraded=True, error=str(error))
