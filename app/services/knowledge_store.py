from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Protocol

import chromadb

from app.config import settings
from app.models.knowledge import KnowledgeDocument, KnowledgeHit, UpsertResult
from app.services.embeddings_local import Embedder, get_embedder


class KnowledgeStore(Protocol):
    async def search(self, scope_id: str, query: str, top_k: int = 5) -> list[KnowledgeHit]: ...

    async def add_documents(
        self, scope_id: str, documents: list[KnowledgeDocument]
    ) -> UpsertResult: ...


class ChromaKnowledgeStore:
    """Vector index with one chroma collection per retrieval scope.

    Embeddings are computed by the injected embedder and handed to chroma
    explicitly, so collections never rely on chroma's own embedding function.
    """

    def __init__(
        self,
        persist_dir: str | None = None,
        *,
        client: Any | None = None,
        embedder: Embedder | None = None,
    ):
        self.persist_dir = Path(persist_dir or settings.chroma_persist_dir)
        self._client = client
        self._embedder = embedder or get_embedder()
        self._client_lock = asyncio.Lock()

    async def add_documents(
        self, scope_id: str, documents: list[KnowledgeDocument]
    ) -> UpsertResult:
        if not documents:
            return UpsertResult()
        vectors = await self._embedder.embed_texts([doc.text for doc in documents])
        client = await self._get_client()

        def _sync_upsert() -> UpsertResult:
            collection = _collection(client, scope_id)
            ids = [doc.id for doc in documents]
            existing = set(collection.get(ids=ids).get("ids") or [])
            collection.upsert(
                ids=ids,
                documents=[doc.text for doc in documents],
                metadatas=[_metadata_for_document(doc) for doc in documents],
                embeddings=vectors,
            )
            return UpsertResult(
                inserted=len(set(ids) - existing),
                deduplicated=len(existing),
            )

        return await asyncio.to_thread(_sync_upsert)

    async def search(self, scope_id: str, query: str, top_k: int = 5) -> list[KnowledgeHit]:
        vector = await self._embedder.embed_text(query)
        client = await self._get_client()

        def _sync_query() -> list[KnowledgeHit]:
            collection = _collection(client, scope_id)
            result = collection.query(
                query_embeddings=[vector],
                n_results=max(int(top_k), 1),
                include=["documents", "metadatas", "distances"],
            )
            docs = (result.get("documents") or [[]])[0]
            metas = (result.get("metadatas") or [[]])[0]
            distances = (result.get("distances") or [[]])[0]
            ids = (result.get("ids") or [[]])[0]
            hits: list[KnowledgeHit] = []
            for idx, doc in enumerate(docs):
                if not isinstance(doc, str):
                    continue
                metadata = metas[idx] if idx < len(metas) and isinstance(metas[idx], dict) else {}
                distance = float(distances[idx]) if idx < len(distances) else 1.0
                hit_id = ids[idx] if idx < len(ids) and isinstance(ids[idx], str) else f"hit_{idx}"
                hits.append(
                    KnowledgeHit(
                        id=hit_id,
                        text=doc,
                        score=1.0 / (1.0 + max(distance, 0.0)),
                        metadata=dict(metadata),
                    )
                )
            return hits

        return await asyncio.to_thread(_sync_query)

    async def delete_scope(self, scope_id: str) -> None:
        client = await self._get_client()
        await asyncio.to_thread(client.delete_collection, _collection_name(scope_id))

    async def _get_client(self) -> Any:
        async with self._client_lock:
            if self._client is None:
                self.persist_dir.mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=str(self.persist_dir))
            return self._client


def _collection(client: Any, scope_id: str) -> Any:
    return client.get_or_create_collection(
        name=_collection_name(scope_id),
        metadata={"scope_id": scope_id},
        embedding_function=None,
    )


def _metadata_for_document(doc: KnowledgeDocument) -> dict[str, Any]:
    metadata: dict[str, Any] = {"url": doc.url, "title": doc.title}
    if doc.published_at:
        metadata["published_at"] = doc.published_at
    if doc.credibility_tier:
        metadata["credibility_tier"] = doc.credibility_tier
    if doc.domain_authority is not None:
        metadata["domain_authority"] = float(doc.domain_authority)
    for key, value in doc.metadata.items():
        # chroma metadata values must be scalars
        if isinstance(value, (str, int, float, bool)):
            metadata[key] = value
    return metadata


def _collection_name(scope_id: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else "_" for ch in scope_id)
    # chroma names: 3-63 chars, alphanumeric at both ends
    return f"scope_{cleaned}"[:63].rstrip("_")


_store: KnowledgeStore | None = None


def get_knowledge_store() -> KnowledgeStore:
    global _store
    if _store is None:
        _store = ChromaKnowledgeStore()
    return _store
