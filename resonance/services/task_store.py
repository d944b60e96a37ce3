"""Durable research task records behind an optimistic write guard.

Every mutation is a compare-and-swap on ``version``: the write commits only
if the stored version still equals the version the caller read. On top of
that, a stored plan, an existing batch analysis entry and a terminal status
are never overwritten.
"""
from __future__ import annotations

import asyncio
from typing import Any, Protocol
from uuid import UUID

from resonance.errors import ConcurrencyConflict, TaskNotFoundError
from resonance.models.task import ResearchTask, TaskStatus, utcnow
from resonance.services.database import coerce_json, get_pool
from resonance.services.logger import log_db_operation

# Fields the orchestrator is allowed to change after creation.
MUTABLE_FIELDS = frozenset(
    {
        "status",
        "plan",
        "batch_analyses",
        "final_report",
        "result_summary",
        "error_message",
        "progress",
    }
)


class TaskStore(Protocol):
    async def create(self, task: ResearchTask) -> ResearchTask: ...

    async def get(self, task_id: str, owner_id: str | None = None) -> ResearchTask: ...

    async def update(
        self, task_id: str, expected_version: int, changes: dict[str, Any]
    ) -> ResearchTask: ...

    async def list_running(self) -> list[ResearchTask]: ...

    async def list_for_owner(self, owner_id: str, limit: int = 50) -> list[ResearchTask]: ...


def check_guards(current: ResearchTask, expected_version: int, changes: dict[str, Any]) -> None:
    """Raise ``ConcurrencyConflict`` if ``changes`` may not be applied to ``current``."""
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
    conflict = ConcurrencyConflict(current.id, expected_version, current.version)
    if current.version != expected_version:
        raise conflict
    if current.is_terminal:
        raise conflict
    if "plan" in changes and current.plan is not None:
        raise conflict
    if "batch_analyses" in changes:
        proposed = changes["batch_analyses"]
        for key, existing in current.batch_analyses.items():
            if proposed.get(key) != existing:
                raise conflict


class InMemoryTaskStore:
    """Process-local store used by tests, the CLI and runs without a database."""

    def __init__(self) -> None:
        self._tasks: dict[str, ResearchTask] = {}
        self._lock = asyncio.Lock()

    async def create(self, task: ResearchTask) -> ResearchTask:
        async with self._lock:
            self._tasks[task.id] = task.model_copy(deep=True)
        return task.model_copy(deep=True)

    async def get(self, task_id: str, owner_id: str | None = None) -> ResearchTask:
        task = self._tasks.get(task_id)
        if task is None or (owner_id is not None and task.owner_id != owner_id):
            raise TaskNotFoundError(task_id)
        return task.model_copy(deep=True)

    async def update(
        self, task_id: str, expected_version: int, changes: dict[str, Any]
    ) -> ResearchTask:
        # The lock covers compare and write only, never stage execution.
        async with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            check_guards(current, expected_version, changes)
            updated = current.model_copy(
                update={
                    **changes,
                    "version": current.version + 1,
                    "updated_at": utcnow(),
                },
                deep=True,
            )
            # Re-validate so the stored record never holds malformed data.
            updated = ResearchTask.model_validate(updated.model_dump())
            self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    async def list_running(self) -> list[ResearchTask]:
        return [
            t.model_copy(deep=True)
            for t in self._tasks.values()
            if t.status == TaskStatus.RUNNING
        ]

    async def list_for_owner(self, owner_id: str, limit: int = 50) -> list[ResearchTask]:
        owned = [t for t in self._tasks.values() if t.owner_id == owner_id]
        owned.sort(key=lambda t: t.created_at, reverse=True)
        return [t.model_copy(deep=True) for t in owned[:limit]]


def _to_column(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name == "status":
        return TaskStatus(value).value
    if name == "batch_analyses":
        return {
            key: entry.model_dump(mode="json", by_alias=True)
            for key, entry in value.items()
        }
    if name in {"plan", "final_report"}:
        return value.model_dump(mode="json", by_alias=True)
    return value


def _row_to_task(row: Any) -> ResearchTask:
    data = dict(row)
    data["id"] = str(data["id"])
    data["parameters"] = coerce_json(data.get("parameters"), {})
    data["messages"] = coerce_json(data.get("messages"), [])
    data["plan"] = coerce_json(data.get("plan"), None)
    data["batch_analyses"] = coerce_json(data.get("batch_analyses"), {})
    data["final_report"] = coerce_json(data.get("final_report"), None)
    return ResearchTask.model_validate(data)


_COLUMNS = (
    "id, owner_id, title, description, clarified_scope, parameters, messages, "
    "status, plan, batch_analyses, final_report, result_summary, error_message, "
    "progress, version, created_at, updated_at"
)


class PostgresTaskStore:
    """``research_tasks`` table accessed through the shared asyncpg pool."""

    async def create(self, task: ResearchTask) -> ResearchTask:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO research_tasks (
                    id, owner_id, title, description, clarified_scope,
                    parameters, messages, status, progress, version,
                    created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                RETURNING {_COLUMNS}
                """,
                UUID(task.id),
                task.owner_id,
                task.title,
                task.description,
                task.clarified_scope,
                task.parameters,
                [m.model_dump(mode="json") for m in task.messages],
                task.status.value,
                task.progress,
                task.version,
                task.created_at,
                task.updated_at,
            )
        log_db_operation("insert", "research_tasks", "success", details=task.id)
        return _row_to_task(row)

    async def get(self, task_id: str, owner_id: str | None = None) -> ResearchTask:
        try:
            key = UUID(task_id)
        except ValueError:
            raise TaskNotFoundError(task_id)
        pool = await get_pool()
        async with pool.acquire() as conn:
            if owner_id is None:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM research_tasks WHERE id = $1", key
                )
            else:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM research_tasks WHERE id = $1 AND owner_id = $2",
                    key,
                    owner_id,
                )
        if row is None:
            raise TaskNotFoundError(task_id)
        return _row_to_task(row)

    async def update(
        self, task_id: str, expected_version: int, changes: dict[str, Any]
    ) -> ResearchTask:
        current = await self.get(task_id)
        # Cheap local rejection; the WHERE clause below is the real guard.
        check_guards(current, expected_version, changes)

        names = list(changes.keys())
        set_clause = ", ".join(f"{name} = ${i + 3}" for i, name in enumerate(names))
        if set_clause:
            set_clause += ", "
        values = [_to_column(name, changes[name]) for name in names]

        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE research_tasks
                SET {set_clause}version = version + 1, updated_at = NOW()
                WHERE id = $1 AND version = $2 AND status = 'running'
                RETURNING {_COLUMNS}
                """,
                UUID(task_id),
                expected_version,
                *values,
            )
        if row is None:
            log_db_operation(
                "update", "research_tasks", "conflict",
                details=f"{task_id} expected version {expected_version}",
            )
            latest = await self.get(task_id)
            raise ConcurrencyConflict(task_id, expected_version, latest.version)
        log_db_operation("update", "research_tasks", "success", details=task_id)
        return _row_to_task(row)

    async def list_running(self) -> list[ResearchTask]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM research_tasks
                WHERE status = 'running'
                ORDER BY updated_at ASC
                """
            )
        return [_row_to_task(r) for r in rows]

    async def list_for_owner(self, owner_id: str, limit: int = 50) -> list[ResearchTask]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM research_tasks
                WHERE owner_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                owner_id,
                limit,
            )
        return [_row_to_task(r) for r in rows]
