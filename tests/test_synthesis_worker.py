"""Tests for report synthesis."""
import pytest

from app.models.evidence import EvidenceItem, JobConfidence, ScoredClaim
from app.workers.synthesis import (
    NO_CLAIMS,
    NO_SOURCES,
    SynthesisWorker,
    confidence_percent,
    format_citations,
    format_claims,
)
from fakes import FakeRouter


def scored_sources():
    return [
        EvidenceItem(
            text="Qubits exploit superposition.",
            retrieval_method="web",
            url="https://example.org/qubits",
            title="Qubit primer",
            composite=0.6849,
        ),
        EvidenceItem(text="Untitled evidence", retrieval_method="rag", id="ev-2", composite=0.4),
    ]


def claims():
    return [
        ScoredClaim(text="Qubits use superposition", confidence_score=0.8),
        ScoredClaim(text="Advantage is near", confidence_score=0.35, contradiction_flag=True),
    ]


def test_format_citations():
    assert format_citations(scored_sources()) == (
        "[1] Qubit primer https://example.org/qubits (score: 0.68)\n"
        "[2] ev-2 (score: 0.40)"
    )
    assert format_citations([]) == NO_SOURCES


def test_format_claims():
    assert format_claims(claims()) == (
        "- Qubits use superposition (confidence: 0.80)\n"
        "- Advantage is near (confidence: 0.35) [CONTRADICTION DETECTED]"
    )
    assert format_claims([]) == NO_CLAIMS


def test_prompt_mentions_contradictions_only_when_present():
    worker = SynthesisWorker(FakeRouter())
    calm = worker.build_messages("q", scored_sources(), claims(), JobConfidence(confidence=0.4231))
    tense = worker.build_messages(
        "q", scored_sources(), claims(), JobConfidence(confidence=0.4231, has_contradictions=True)
    )

    assert "Overall Confidence: 42%" in calm[0]["content"]
    assert "Sources (2 total)" in calm[0]["content"]
    assert "Contradictions were detected" not in calm[0]["content"]
    assert "Contradictions were detected" in tense[0]["content"]
    assert calm[1]["content"] == "Generate a comprehensive research report for: q"


@pytest.mark.parametrize(
    "confidence, percent",
    [(0.125, 13), (0.375, 38), (0.4231, 42), (0.0, 0), (1.0, 100)],
)
def test_confidence_percent_rounds_halves_up(confidence, percent):
    assert confidence_percent(confidence) == percent


def test_prompt_shows_rounded_up_confidence():
    messages = SynthesisWorker(FakeRouter()).build_messages(
        "q", scored_sources(), claims(), JobConfidence(confidence=0.125)
    )
    assert "Overall Confidence: 13%" in messages[0]["content"]


def test_prompt_is_deterministic():
    worker = SynthesisWorker(FakeRouter())
    first = worker.build_messages("q", scored_sources(), claims(), JobConfidence(confidence=0.5))
    second = worker.build_messages("q", scored_sources(), claims(), JobConfidence(confidence=0.5))
    assert first == second


@pytest.mark.asyncio
async def test_execute_returns_report_and_usage():
    router = FakeRouter({"synthesis": "# Quantum computing\n\nQubits [1]."})

    outcome = await SynthesisWorker(router).execute("q", scored_sources(), claims(), JobConfidence())

    assert outcome.degraded is False
    assert outcome.value.synthesis.startswith("# Quantum computing")
    assert outcome.value.token_usage == {"input_tokens": 10, "output_tokens": 20, "total_tokens": 30}
    assert outcome.value.error is None
    assert router.calls_for("synthesis")[0]["temperature"] == 0.4


@pytest.mark.asyncio
async def test_execute_failure_returns_placeholder():
    router = FakeRouter({"synthesis": RuntimeError("model overloaded")})

    outcome = await SynthesisWorker(router).execute("q", [], [], JobConfidence())

    assert outcome.degraded is True
    assert outcome.value.synthesis == "Synthesis failed: model overloaded"
    assert outcome.value.error == "model overloaded"
    assert outcome.value.token_usage == {}
