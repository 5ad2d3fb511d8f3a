from __future__ import annotations

import asyncio
import hashlib
from typing import Any, Awaitable, Sequence

from app.config import settings
from app.models.evidence import EvidenceItem, StageOutcome
from app.research_core.fusion import dedupe_by_text, fusion_key, reciprocal_rank_fusion
from app.services.knowledge_store import KnowledgeStore
from app.services.logger import logger
from app.tools.search_provider import WebSearchClient


class RetrievalWorker:
    """Hybrid retrieval: knowledge index + optional web search, merged with RRF.

    Every individual lookup is guarded on its own; a failing call only removes
    its own hits from the evidence set.
    """

    name = "retrieval"

    def __init__(
        self,
        knowledge_store: KnowledgeStore,
        web_search: WebSearchClient | None = None,
        *,
        top_k: int | None = None,
        web_max_queries: int | None = None,
        web_max_results: int | None = None,
        timeout_s: float | None = None,
        max_parallel: int | None = None,
    ):
        self.knowledge_store = knowledge_store
        self.web_search = web_search
        self.top_k = top_k or settings.knowledge_top_k
        self.web_max_queries = web_max_queries or settings.web_search_max_queries
        self.web_max_results = web_max_results or settings.web_search_max_results
        self.timeout_s = timeout_s or settings.retrieval_timeout_seconds
        self._semaphore = asyncio.Semaphore(max(max_parallel or settings.retrieval_max_parallel, 1))

    @property
    def web_enabled(self) -> bool:
        return self.web_search is not None and self.web_search.is_configured()

    async def execute(
        self, sub_questions: Sequence[str], scope_id: str
    ) -> StageOutcome[list[EvidenceItem]]:
        errors: list[str] = []
        rag_results, web_results = await asyncio.gather(
            self._rag_retrieve_all(sub_questions, scope_id, errors),
            self._web_retrieve_all(sub_questions, errors),
        )

        result_sets = [results for results in (rag_results, web_results) if results]
        if not result_sets:
            reason = "; ".join(errors) if errors else "no evidence found"
            return StageOutcome.fallback([], reason)

        fused = dedupe_by_text(reciprocal_rank_fusion(result_sets))
        for item in fused:
            if not item.id:
                item.id = hashlib.sha1(fusion_key(item).encode("utf-8")).hexdigest()[:16]

        logger.info(
            f"Retrieved {len(fused)} evidence items "
            f"(rag={len(rag_results)}, web={len(web_results)}, errors={len(errors)})"
        )
        return StageOutcome.ok(fused)

    async def _guarded(self, awaitable: Awaitable[Any], label: str, errors: list[str]) -> Any:
        async with self._semaphore:
            try:
                return await asyncio.wait_for(awaitable, timeout=self.timeout_s)
            except asyncio.TimeoutError:
                errors.append(f"{label}: timed out after {self.timeout_s:g}s")
            except Exception as e:
                errors.append(f"{label}: {e}")
            logger.warning(f"Retrieval lookup failed, treating as empty: {errors[-1]}")
            return []

    async def _rag_retrieve_all(
        self, sub_questions: Sequence[str], scope_id: str, errors: list[str]
    ) -> list[EvidenceItem]:
        batches = await asyncio.gather(
            *(
                self._guarded(
                    self.knowledge_store.search(scope_id, question, self.top_k),
                    f"knowledge[{index}]",
                    errors,
                )
                for index, question in enumerate(sub_questions)
            )
        )
        items: list[EvidenceItem] = []
        for hits in batches:
            for hit in hits:
                metadata = dict(hit.metadata or {})
                metadata.setdefault("chunk_id", hit.id)
                items.append(
                    EvidenceItem(
                        text=hit.text,
                        retrieval_method="rag",
                        id=metadata.get("evidence_id"),
                        url=str(metadata.get("url") or ""),
                        title=str(metadata.get("title") or ""),
                        raw_score=float(hit.score or 0.0),
                        published_at=metadata.get("published_at"),
                        metadata=metadata,
                    )
                )
        return _unique(items)

    async def _web_retrieve_all(
        self, sub_questions: Sequence[str], errors: list[str]
    ) -> list[EvidenceItem]:
        if not self.web_enabled:
            return []
        queries = list(sub_questions)[: self.web_max_queries]
        batches = await asyncio.gather(
            *(
                self._guarded(
                    self.web_search.search(query, max_results=self.web_max_results),
                    f"web[{index}]",
                    errors,
                )
                for index, query in enumerate(queries)
            )
        )
        items: list[EvidenceItem] = []
        for results in batches:
            for result in results:
                if not result.content:
                    continue
                items.append(
                    EvidenceItem(
                        text=result.content,
                        retrieval_method="web",
                        url=result.url,
                        title=result.title,
                        raw_score=float(result.score or 0.0),
                        published_at=result.published_date,
                    )
                )
        return _unique(items)


def _unique(items: list[EvidenceItem]) -> list[EvidenceItem]:
    """One entry per fusion key within a channel, keeping the best (earliest) rank."""
    seen: set[str] = set()
    unique: list[EvidenceItem] = []
    for item in items:
        key = fusion_key(item)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique
