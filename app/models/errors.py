from __future__ import annotations


class ResearchError(Exception):
    """Base class for research pipeline errors."""


class JobNotFoundError(ResearchError):
    def __init__(self, job_id: str):
        super().__init__(f"Research job not found: {job_id}")
        self.job_id = job_id


class InvalidTransitionError(ResearchError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal job status transition: {current} -> {target}")
        self.current = current
        self.target = target


class StageTimeoutError(ResearchError):
    """An external call inside a stage exceeded its time budget."""

    def __init__(self, label: str, timeout_s: float):
        super().__init__(f"{label} timed out after {timeout_s:g}s")
        self.label = label
        self.timeout_s = timeout_s


class ModelResponseError(ResearchError):
    """The model returned content that does not satisfy the stage contract."""
