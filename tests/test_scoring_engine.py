"""Tests for source, claim, and job confidence scoring."""
import math
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from app.research_core.scoring import (
    ClaimScorer,
    JobConfidenceCalculator,
    SourceScorer,
    source_count_multiplier,
)

NOW = datetime(2026, 1, 1, tzinfo=UTC)


class TestSourceScorer:
    def test_composite_stays_within_bounds(self):
        scorer = SourceScorer()
        best = scorer.score_source(
            domain_authority=100,
            published_at=NOW,
            relevance_score=1.0,
            credibility_tier="PRIMARY_SOURCE",
            now=NOW,
        )
        worst = scorer.score_source(
            domain_authority=0,
            published_at=NOW - timedelta(days=3650),
            relevance_score=0.0,
            credibility_tier="FLAGGED",
            now=NOW,
        )
        assert best.composite == pytest.approx(1.0)
        assert 0.0 <= worst.composite < 0.01

    def test_composite_weights(self):
        composite = SourceScorer.composite(80, 0.5, 0.6, 0.85)
        assert composite == pytest.approx(0.2 + 0.1 + 0.21 + 0.17)

    def test_recency_at_half_year_is_one_over_e(self):
        score = SourceScorer.recency_score(NOW - timedelta(days=180), now=NOW)
        assert score == pytest.approx(math.exp(-1), abs=1e-4)
        assert score == pytest.approx(0.3679, abs=1e-4)

    def test_recency_accepts_iso_strings(self):
        score = SourceScorer.recency_score("2025-07-04T00:00:00Z", now=NOW)
        assert score == pytest.approx(math.exp(-180 / 180), abs=1e-3)

    @pytest.mark.parametrize("value", [None, "", "not a date", 12345])
    def test_recency_unknown_date_is_neutral(self, value):
        assert SourceScorer.recency_score(value, now=NOW) == 0.5

    def test_future_dates_cap_at_one(self):
        assert SourceScorer.recency_score(NOW + timedelta(days=30), now=NOW) == 1.0

    def test_domain_authority_default_and_clamp(self):
        assert SourceScorer.domain_authority(None) == 50
        assert SourceScorer.domain_authority(150) == 100
        assert SourceScorer.domain_authority(-5) == 0

    def test_domain_authority_ignores_non_numeric_values(self):
        assert SourceScorer.domain_authority("high") == 50
        assert SourceScorer.domain_authority(float("nan")) == 50
        assert SourceScorer.domain_authority(True) == 50
        assert SourceScorer.domain_authority("72") == 72

    def test_unknown_credibility_tier_scores_as_unverified(self):
        assert SourceScorer.credibility_score("BLOG") == 0.3
        assert SourceScorer.credibility_score(None) == 0.3
        assert SourceScorer.credibility_score(["PRIMARY_SOURCE"]) == 0.3
        assert SourceScorer.credibility_score("AUTHORITATIVE") == 0.85


class TestClaimScorer:
    def test_support_and_corroboration(self):
        score = ClaimScorer().score_claim([0.8, 0.6])
        assert score.support_strength == pytest.approx(0.7)
        assert score.confidence_score == pytest.approx(0.8)
        assert score.contradiction_flag is False

    def test_each_contradiction_costs_fifteen_points(self):
        scorer = ClaimScorer()
        clean = scorer.score_claim([0.8, 0.6])
        one = scorer.score_claim([0.8, 0.6], [0.5])
        two = scorer.score_claim([0.8, 0.6], [0.5, 0.4])
        assert clean.confidence_score - one.confidence_score == pytest.approx(0.15)
        assert one.confidence_score - two.confidence_score == pytest.approx(0.15)
        assert one.contradiction_flag is True

    def test_confidence_clamps_to_zero(self):
        score = ClaimScorer().score_claim([0.2], [0.9, 0.9, 0.9])
        assert score.confidence_score == 0.0

    def test_corroboration_caps_at_one(self):
        score = ClaimScorer().score_claim([0.95] * 6)
        assert score.confidence_score == 1.0

    def test_unsupported_claim(self):
        score = ClaimScorer().score_claim([])
        assert score.support_strength == 0.0
        assert score.confidence_score == 0.0


class TestJobConfidence:
    @pytest.mark.parametrize(
        "count, expected",
        [(0, 0.0), (1, 0.1), (5, 0.5), (10, 1.0), (25, 1.0)],
    )
    def test_source_count_multiplier(self, count, expected):
        assert source_count_multiplier(count) == pytest.approx(expected)

    def test_no_claims_means_zero_confidence(self):
        result = JobConfidenceCalculator().calculate_job_confidence([], 12)
        assert result.confidence == 0.0
        assert result.claim_count == 0
        assert result.source_count == 12

    def test_mean_claim_confidence_damped_by_source_count(self):
        claims = [
            SimpleNamespace(confidence_score=0.8, contradiction_flag=False),
            SimpleNamespace(confidence_score=0.6, contradiction_flag=True),
        ]
        result = JobConfidenceCalculator().calculate_job_confidence(claims, 5)
        assert result.confidence == pytest.approx(0.35)
        assert result.claim_count == 2
        assert result.has_contradictions is True
