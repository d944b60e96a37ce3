"""Error taxonomy for research task orchestration."""
from __future__ import annotations

from typing import Any


class ResonanceError(Exception):
    """Base class for every error raised by the research engine."""

    code: str = "INTERNAL_ERROR"


class ValidationError(ResonanceError):
    """Task creation input was rejected; the task is never created."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ExternalServiceError(ResonanceError):
    """A generation or retrieval call failed or timed out."""

    code = "SERVICE_UNAVAILABLE"


class SchemaError(ResonanceError):
    """A generation response did not match the required structure."""

    code = "SCHEMA_ERROR"

    def __init__(self, message: str, raw: str = "", diagnostics: list[str] | None = None):
        super().__init__(message)
        self.raw = raw
        self.diagnostics = list(diagnostics or [])


class ConcurrencyConflict(ResonanceError):
    """The optimistic write guard rejected a stale update."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, task_id: str, expected_version: int, actual_version: int | None = None):
        super().__init__(
            f"Task {task_id} changed since read "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class TaskNotFoundError(ResonanceError):
    code = "NOT_FOUND"

    def __init__(self, task_id: str):
        super().__init__(f"Research task not found: {task_id}")
        self.task_id = task_id


class RateLimitExceeded(ResonanceError):
    code = "RATE_LIMITED"

    def __init__(self, limit: int, window_seconds: int):
        super().__init__(
            f"Too many research tasks created; limit is {limit} per {window_seconds} seconds"
        )
        self.limit = limit
        self.window_seconds = window_seconds
