from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator

from resonance.models.task import CamelModel, ResearchTask, TaskStatus
from resonance.services.progress import report_progress

TITLE_MAX = 200
DESCRIPTION_MAX = 5000
SCOPE_MAX = 10000
MESSAGES_MAX = 50
MESSAGE_CONTENT_MAX = 10000


def _require_text(value: str, label: str) -> str:
    if not value.strip():
        raise ValueError(f"{label} must not be empty")
    return value


# --- Requests ---


class RequestMessage(CamelModel):
    role: Literal["system", "assistant", "user"]
    content: str = Field(max_length=MESSAGE_CONTENT_MAX)


class CreateTaskRequest(CamelModel):
    title: str = Field(max_length=TITLE_MAX)
    description: str = Field(max_length=DESCRIPTION_MAX)
    clarified_scope: str = Field(max_length=SCOPE_MAX)
    parameters: dict[str, Any]
    messages: list[RequestMessage] = Field(default_factory=list, max_length=MESSAGES_MAX)

    @field_validator("title")
    @classmethod
    def _title(cls, value: str) -> str:
        return _require_text(value, "title")

    @field_validator("description")
    @classmethod
    def _description(cls, value: str) -> str:
        return _require_text(value, "description")

    @field_validator("clarified_scope")
    @classmethod
    def _scope(cls, value: str) -> str:
        return _require_text(value, "clarifiedScope")


class ClarifyRequest(CamelModel):
    title: str = Field(min_length=1, max_length=TITLE_MAX)
    description: str = Field(min_length=1, max_length=DESCRIPTION_MAX)


class ClarifyContinueRequest(ClarifyRequest):
    messages: list[RequestMessage] = Field(min_length=1, max_length=MESSAGES_MAX)


# --- Generation outputs for the clarify flow ---


class ClarifyQuestions(CamelModel):
    summary: str
    initial_questions: list[str] = Field(min_length=1)


class ClarifiedScope(CamelModel):
    clarified_scope: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    assistant_message: str = ""


# --- Responses ---


class CreateTaskResponse(CamelModel):
    task_id: str


class TaskStatusResponse(CamelModel):
    status: TaskStatus
    progress: int
    status_message: str
    report_ready: bool

    @classmethod
    def from_task(cls, task: ResearchTask) -> "TaskStatusResponse":
        report = report_progress(task)
        return cls(
            status=task.status,
            progress=report.progress,
            status_message=report.status_message,
            report_ready=task.final_report is not None,
        )


class TaskSummary(TaskStatusResponse):
    task_id: str
    title: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: ResearchTask) -> "TaskSummary":
        status = TaskStatusResponse.from_task(task)
        return cls(
            task_id=task.id,
            title=task.title,
            created_at=task.created_at,
            updated_at=task.updated_at,
            **status.model_dump(),
        )


class TaskListResponse(CamelModel):
    tasks: list[TaskSummary]
