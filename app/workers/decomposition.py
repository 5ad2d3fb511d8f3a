from __future__ import annotations

import re

from app.config import settings
from app.llm_client import ModelRouter
from app.models.evidence import StageOutcome
from app.services.logger import logger
from app.services.prompt_store import stage_messages
from app.workers.base import BaseWorker

MAX_GENERATED = 7
MAX_TOTAL = 8

# "1. ", "2) ", "- ", "* " but not "3.5 million"
_ENUMERATION_PREFIX = re.compile(r"^\s*(?:\d+[.)](?!\d)\s*|[-*•]\s+)")


def clean_sub_questions(query: str, raw_items: list) -> list[str]:
    """Original query first, then up to seven unique generated sub-questions."""
    cleaned: list[str] = []
    for item in raw_items:
        if item is None:
            continue
        text = _ENUMERATION_PREFIX.sub("", str(item)).strip()
        if text:
            cleaned.append(text)

    unique = list(dict.fromkeys(cleaned))[:MAX_GENERATED]
    return [query, *(q for q in unique if q != query)][:MAX_TOTAL]


class DecompositionWorker(BaseWorker):
    name = "decomposition"

    def __init__(self, router: ModelRouter, *, timeout_s: float | None = None):
        super().__init__(router, timeout_s=timeout_s or settings.decomposition_timeout_seconds)

    async def execute(self, query: str) -> StageOutcome[list[str]]:
        """Split a query into sub-questions. Never raises; falls back to ``[query]``."""
        try:
            completion = await self.complete(
                stage_messages("decomposition", query=query),
                temperature=0.3,
                max_tokens=1024,
            )
            sub_questions = clean_sub_questions(query, self.parse_json_array(completion.content))
        except Exception as e:
            logger.warning(f"Decomposition degraded to the original query: {e}")
            return StageOutcome.fallback([query], e)
        return StageOutcome.ok(sub_questions)
