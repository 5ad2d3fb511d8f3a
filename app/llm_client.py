"""OpenRouter-backed model router used by every LLM stage."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.config import settings
from app.services import logger as log_service


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ChatCompletion:
    content: str
    usage: Usage = field(default_factory=Usage)
    model: str = ""


class ModelRouter(Protocol):
    async def chat_completion(
        self,
        messages: list[dict[str, Any]],
        *,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        caller: str = "router",
    ) -> ChatCompletion: ...


class OpenRouterModelRouter:
    """Chat completions through the OpenAI-compatible SDK pointed at OpenRouter."""

    def __init__(self, openai_client: Any, model: str | None = None):
        self._client = openai_client
        self.model = model or get_model()

    @staticmethod
    def _temperature_for_model(model: str, requested: float) -> float:
        # Some OpenAI GPT-5-compatible gateways reject anything but temperature=1.
        if "gpt-5" in (model or "").lower():
            return 1
        return requested

    @staticmethod
    def _from_openai_response(response: Any, model: str) -> ChatCompletion:
        choices = getattr(response, "choices", None) or []
        text = ""
        if choices:
            message = getattr(choices[0], "message", None)
            text = getattr(message, "content", None) or ""
        usage = getattr(response, "usage", None)
        return ChatCompletion(
            content=text,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=model,
        )

    async def chat_completion(
        self,
        messages: list[dict[str, Any]],
        *,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        caller: str = "router",
    ) -> ChatCompletion:
        t0 = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=self._temperature_for_model(self.model, temperature),
            )
        except Exception as e:
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise

        completion = self._from_openai_response(response, self.model)
        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=completion.usage.input_tokens,
            output_tokens=completion.usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return completion


def get_client(model: str | None = None) -> OpenRouterModelRouter:
    """Build the router on top of an AsyncOpenAI client aimed at OpenRouter."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return OpenRouterModelRouter(openai_client, model=model)


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


_client: OpenRouterModelRouter | None = None


def client() -> OpenRouterModelRouter:
    """Get or create the shared model router."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
