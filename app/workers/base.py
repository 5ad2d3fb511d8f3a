from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, TypeVar

from app.llm_client import ChatCompletion, ModelRouter
from app.models.errors import ModelResponseError, StageTimeoutError

T = TypeVar("T")


class BaseWorker:
    """Shared timeout and model-output parsing for the pipeline stages.

    Subclasses set ``name`` and call ``complete`` for their one LLM call;
    deciding between degraded output and raising stays with the subclass.
    """

    name: str = "base"

    def __init__(self, router: ModelRouter, *, timeout_s: float = 60.0):
        self.router = router
        self.timeout_s = timeout_s

    async def with_timeout(self, awaitable: Awaitable[T], label: str | None = None) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            raise StageTimeoutError(label or f"{self.name} call", self.timeout_s) from e

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        temperature: float,
        max_tokens: int = 4096,
    ) -> ChatCompletion:
        return await self.with_timeout(
            self.router.chat_completion(
                messages,
                temperature=temperature,
                max_tokens=max_tokens,
                caller=self.name,
            ),
            label=f"{self.name} LLM call",
        )

    @staticmethod
    def parse_json_array(raw_text: str) -> list[Any]:
        """Parse a JSON array from model output, tolerating a markdown fence around it."""
        text = (raw_text or "").strip()
        if text.startswith("```"):
            parts = text.split("```")
            if len(parts) >= 2:
                text = parts[1]
            if text.startswith("json"):
                text = text[4:]
            text = text.strip()
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ModelResponseError(f"{e.msg} at position {e.pos}") from e
        if not isinstance(parsed, list):
            raise ModelResponseError(f"expected a JSON array, got {type(parsed).__name__}")
        return parsed
