"""Best-effort mirror of task status into the legacy ``resonance_research`` record.

The mirror is a read model. Failures here are logged and never surface to
the caller; ``ProjectionSync.reconcile`` repairs records that drifted.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from resonance.errors import TaskNotFoundError
from resonance.models.task import ResearchTask, TaskStatus, utcnow
from resonance.services.database import coerce_json, get_pool
from resonance.services.logger import log_db_operation, log_event, logger


class ProjectionRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    title: str
    initial_prompt: str = ""
    input_context: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] | None = None
    status: str = TaskStatus.RUNNING.value
    error_message: str | None = None
    last_run_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def task_id(self) -> str | None:
        return self.input_context.get("researchTaskId")


class ProjectionStore(Protocol):
    async def insert(self, record: ProjectionRecord) -> ProjectionRecord: ...

    async def find_by_task(self, task_id: str) -> ProjectionRecord | None: ...

    async def update(self, record_id: str, fields: dict[str, Any]) -> None: ...

    async def list_by_status(self, status: str) -> list[ProjectionRecord]: ...


def record_for_task(task: ResearchTask) -> ProjectionRecord:
    return ProjectionRecord(
        user_id=task.owner_id,
        title=task.title,
        initial_prompt=(
            f"Clarified Scope:\n{task.clarified_scope}\n\n"
            f"Original Description:\n{task.description}"
        ),
        input_context={
            "description": task.description,
            "clarifiedScope": task.clarified_scope,
            "parameters": task.parameters,
            "messages": [m.model_dump(mode="json") for m in task.messages],
            "researchTaskId": task.id,
        },
    )


def desired_fields(task: ResearchTask) -> dict[str, Any]:
    """Projection columns implied by the task's current state."""
    fields: dict[str, Any] = {
        "status": task.status.value,
        "result": {
            "researchTaskId": task.id,
            "resultSummary": task.result_summary,
            "reportReady": task.final_report is not None,
        },
    }
    if task.status == TaskStatus.FAILED:
        fields["error_message"] = task.error_message or task.result_summary or "Research task failed"
    return fields


def _differs(record: ProjectionRecord, fields: dict[str, Any]) -> bool:
    return any(getattr(record, name) != value for name, value in fields.items())


class ProjectionSync:
    def __init__(self, projections: ProjectionStore, tasks: Any):
        self.projections = projections
        self.tasks = tasks

    async def create_for_task(self, task: ResearchTask) -> ProjectionRecord | None:
        try:
            return await self.projections.insert(record_for_task(task))
        except Exception as exc:
            log_event("projection_create_failed", str(exc), task_id=task.id)
            return None

    async def _apply(self, task: ResearchTask) -> bool:
        record = await self.projections.find_by_task(task.id)
        if record is None:
            # Creation was lost; insert a fresh record and bring it up to date below.
            record = await self.projections.insert(record_for_task(task))
            log_event("projection_recreated", "Inserted missing projection record", task_id=task.id)
        fields = desired_fields(task)
        if not _differs(record, fields):
            return False
        fields["updated_at"] = utcnow()
        if task.is_terminal:
            fields["last_run_at"] = utcnow()
        await self.projections.update(record.id, fields)
        return True

    async def sync(self, task: ResearchTask) -> bool:
        """Mirror ``task`` into its projection record, creating it if missing.

        Returns True if a record was written.
        """
        try:
            return await self._apply(task)
        except Exception as exc:
            log_event("projection_sync_failed", str(exc), task_id=task.id)
            return False

    async def reconcile(self) -> int:
        """Repair drifted projection records.

        Records still marked running are rewritten if their task moved on,
        and running tasks with no record at all get one inserted.
        """
        repaired = 0
        seen: set[str] = set()
        for record in await self.projections.list_by_status(TaskStatus.RUNNING.value):
            task_id = record.task_id
            if not task_id:
                continue
            seen.add(task_id)
            try:
                task = await self.tasks.get(task_id)
            except TaskNotFoundError:
                logger.debug(f"Projection {record.id} points at missing task {task_id}")
                continue
            if await self.sync(task):
                repaired += 1
        for task in await self.tasks.list_running():
            if task.id not in seen and await self.sync(task):
                repaired += 1
        if repaired:
            log_event("projection_reconciled", f"Repaired {repaired} projection records")
        return repaired


class InMemoryProjectionStore:
    def __init__(self) -> None:
        self.records: dict[str, ProjectionRecord] = {}
        self._lock = asyncio.Lock()

    async def insert(self, record: ProjectionRecord) -> ProjectionRecord:
        async with self._lock:
            self.records[record.id] = record.model_copy(deep=True)
        return record

    async def find_by_task(self, task_id: str) -> ProjectionRecord | None:
        for record in self.records.values():
            if record.task_id == task_id:
                return record.model_copy(deep=True)
        return None

    async def update(self, record_id: str, fields: dict[str, Any]) -> None:
        async with self._lock:
            current = self.records[record_id]
            self.records[record_id] = current.model_copy(update=fields, deep=True)

    async def list_by_status(self, status: str) -> list[ProjectionRecord]:
        return [r.model_copy(deep=True) for r in self.records.values() if r.status == status]


_PROJECTION_COLUMNS = (
    "id, user_id, title, initial_prompt, input_context, result, status, "
    "error_message, last_run_at, created_at, updated_at"
)


def _row_to_record(row: Any) -> ProjectionRecord:
    data = dict(row)
    data["id"] = str(data["id"])
    data["input_context"] = coerce_json(data.get("input_context"), {})
    data["result"] = coerce_json(data.get("result"), None)
    return ProjectionRecord.model_validate(data)


class PostgresProjectionStore:
    async def insert(self, record: ProjectionRecord) -> ProjectionRecord:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO resonance_research (
                    id, user_id, title, initial_prompt, input_context, status
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING {_PROJECTION_COLUMNS}
                """,
                UUID(record.id),
                record.user_id,
                record.title,
                record.initial_prompt,
                record.input_context,
                record.status,
            )
        log_db_operation("insert", "resonance_research", "success", details=record.task_id)
        return _row_to_record(row)

    async def find_by_task(self, task_id: str) -> ProjectionRecord | None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_PROJECTION_COLUMNS} FROM resonance_research
                WHERE input_context ->> 'researchTaskId' = $1
                LIMIT 1
                """,
                task_id,
            )
        return _row_to_record(row) if row else None

    async def update(self, record_id: str, fields: dict[str, Any]) -> None:
        names = list(fields.keys())
        set_clause = ", ".join(f"{name} = ${i + 2}" for i, name in enumerate(names))
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                f"UPDATE resonance_research SET {set_clause} WHERE id = $1",
                UUID(record_id),
                *[fields[name] for name in names],
            )
        log_db_operation("update", "resonance_research", "success", details=record_id)

    async def list_by_status(self, status: str) -> list[ProjectionRecord]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_PROJECTION_COLUMNS} FROM resonance_research WHERE status = $1",
                status,
            )
        return [_row_to_record(r) for r in rows]
