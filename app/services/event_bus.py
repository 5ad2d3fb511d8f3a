"""In-process broadcast of research lifecycle events.

Each subscriber owns a bounded queue, so a slow consumer (an idle SSE client,
say) only ever loses its own oldest events and never blocks the pipeline.
"""
from __future__ import annotations

import asyncio
from typing import Any

from app.config import settings
from app.models.events import EventType, ResearchEvent
from app.services import logger as log_service

_CLOSED = object()


class Subscription:
    def __init__(self, bus: "EventBus", max_queue_size: int):
        self._bus = bus
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(max_queue_size, 1))
        self.dropped = 0
        self.closed = False
        self._closing = False

    def _offer(self, item: Any) -> None:
        if self._closing and item is not _CLOSED:
            return
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1

    async def get(self, timeout: float | None = None) -> ResearchEvent | None:
        """Next event, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _CLOSED:
            self.closed = True
            return None
        return item

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._bus._unsubscribe(self)
        self._offer(_CLOSED)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ResearchEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    def __init__(self, max_queue_size: int | None = None):
        self.max_queue_size = max_queue_size or int(settings.event_queue_size)
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.max_queue_size)
        self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event: ResearchEvent) -> ResearchEvent:
        log_service.log_event(event_type=event.event.value, message="research event", **event.data)
        for subscription in list(self._subscribers):
            subscription._offer(event)
        return event

    def emit(self, name: EventType | str, payload: dict[str, Any] | None = None) -> ResearchEvent:
        return self.publish(ResearchEvent(event=EventType(name), data=dict(payload or {})))

    def close(self) -> None:
        for subscription in list(self._subscribers):
            subscription.close()
