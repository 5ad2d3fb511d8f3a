from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    QUEUED = "research:queued"
    PROGRESS = "research:progress"
    COMPLETED = "research:completed"
    FAILED = "research:failed"
    CANCELLED = "research:cancelled"


@dataclass
class ResearchEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> dict[str, str]:
        return {"event": self.event.value, "data": json.dumps(self.data, default=str)}
