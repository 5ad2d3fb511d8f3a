from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class KnowledgeDocument:
    id: str
    text: str
    url: str = ""
    title: str = ""
    published_at: str | None = None
    credibility_tier: str | None = None
    domain_authority: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class KnowledgeHit:
    id: str
    text: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class UpsertResult:
    inserted: int = 0
    deduplicated: int = 0
