from __future__ import annotations

import asyncio
import hashlib
import math
from typing import Any, Protocol

from app.config import settings

HASHED_DIM = 384


class Embedder(Protocol):
    async def embed_texts(self, texts: list[str]) -> list[list[float]]: ...

    async def embed_text(self, text: str) -> list[float]: ...


class LocalEmbeddingService:
    """sentence-transformers embeddings computed off the event loop."""

    def __init__(self, model_name: str | None = None, batch_size: int | None = None):
        self.model_name = model_name or settings.local_embed_model
        self.batch_size = batch_size or int(settings.local_embed_batch_size)
        self._model: Any | None = None
        self._lock = asyncio.Lock()

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        async with self._lock:
            if self._model is None:
                self._model = await asyncio.to_thread(self._load_model)
        return await asyncio.to_thread(self._embed_sync, texts)

    async def embed_text(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    def _load_model(self) -> Any:
        from sentence_transformers import SentenceTransformer

        return SentenceTransformer(self.model_name)

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        vectors = self._model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [list(map(float, row)) for row in vectors]


class HashingEmbeddingService:
    """Deterministic bag-of-tokens vectors; no model download. Useful for dev and tests."""

    def __init__(self, dim: int = HASHED_DIM):
        self.dim = dim

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [hashed_embedding(text, self.dim) for text in texts]

    async def embed_text(self, text: str) -> list[float]:
        return hashed_embedding(text, self.dim)


def hashed_embedding(text: str, dim: int = HASHED_DIM) -> list[float]:
    values = [0.0] * dim
    for token in text.lower().split():
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        bucket = int.from_bytes(digest[:4], "big") % dim
        values[bucket] += 1.0
    norm = math.sqrt(sum(v * v for v in values))
    if norm <= 0:
        return values
    return [v / norm for v in values]


def get_embedder() -> Embedder:
    backend = settings.embedding_backend.lower().strip()
    if backend == "local":
        return LocalEmbeddingService()
    if backend == "hashing":
        return HashingEmbeddingService()
    raise ValueError(f"Unsupported EMBEDDING_BACKEND: {settings.embedding_backend}")
