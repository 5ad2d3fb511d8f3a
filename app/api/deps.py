from __future__ import annotations

from fastapi import Request

from app.services.queue_service import ResearchQueueService


def get_queue(request: Request) -> ResearchQueueService:
    """The queue service the app started with; tests swap it on ``app.state``."""
    return request.app.state.queue
