from __future__ import annotations

from typing import Sequence

from app.models.evidence import EvidenceItem

RRF_K = 60
TEXT_KEY_CHARS = 100


def text_key(text: str, *, max_chars: int = TEXT_KEY_CHARS) -> str:
    """Whitespace-collapsed, case-folded prefix used to spot repeated evidence."""
    return " ".join((text or "").split()).casefold()[:max_chars]


def fusion_key(item: EvidenceItem) -> str:
    if item.id:
        return f"id:{item.id}"
    return f"text:{text_key(item.text)}"


def reciprocal_rank_fusion(
    result_sets: Sequence[Sequence[EvidenceItem]], *, k: int = RRF_K
) -> list[EvidenceItem]:
    """Merge ranked lists: score(d) = sum over lists of 1 / (k + rank + 1), rank 0-based.

    The first payload seen for a key is kept; later sightings only add score.
    """
    scores: dict[str, float] = {}
    items: dict[str, EvidenceItem] = {}
    for result_set in result_sets:
        for rank, item in enumerate(result_set):
            key = fusion_key(item)
            scores[key] = scores.get(key, 0.0) + 1.0 / (k + rank + 1)
            items.setdefault(key, item)

    fused: list[EvidenceItem] = []
    for key, score in scores.items():
        item = items[key]
        item.rrf_score = score
        fused.append(item)
    # sorted() is stable, so ties keep first-seen order.
    return sorted(fused, key=lambda item: item.rrf_score, reverse=True)


def dedupe_by_text(items: Sequence[EvidenceItem]) -> list[EvidenceItem]:
    seen: set[str] = set()
    deduped: list[EvidenceItem] = []
    for item in items:
        key = text_key(item.text)
        if key in seen:
            continue
        seen.add(key)
        deduped.append(item)
    return deduped
