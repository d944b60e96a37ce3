"""Tests for the asyncpg-backed task store, with the pool mocked out."""
import json
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

import pytest

from conftest import analysis_json, make_task, plan_json
from resonance.errors import ConcurrencyConflict
from resonance.models.task import BatchAnalysis, ResearchPlan, TaskStatus
from resonance.services.task_store import PostgresTaskStore


def _row(task, **overrides):
    row = task.model_dump()
    row["id"] = UUID(task.id)
    row["status"] = task.status.value
    row.update(overrides)
    return row


def _pool(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = False
    return pool


@pytest.fixture
def conn():
    return AsyncMock()


@pytest.fixture
def pool_patch(conn):
    with patch(
        "resonance.services.task_store.get_pool", AsyncMock(return_value=_pool(conn))
    ) as get_pool:
        yield get_pool


class TestGuardedUpdate:
    @pytest.mark.asyncio
    async def test_missing_row_raises_conflict(self, conn, pool_patch):
        task = make_task()
        conn.fetchrow.side_effect = [_row(task), None, _row(task, version=2)]

        with pytest.raises(ConcurrencyConflict) as excinfo:
            await PostgresTaskStore().update(task.id, 1, {"progress": 10})

        assert excinfo.value.expected_version == 1
        assert excinfo.value.actual_version == 2
        sql, *args = conn.fetchrow.await_args_list[1].args
        assert "WHERE id = $1 AND version = $2 AND status = 'running'" in sql
        assert "version = version + 1" in sql
        assert args == [UUID(task.id), 1, 10]

    @pytest.mark.asyncio
    async def test_stale_read_is_rejected_before_writing(self, conn, pool_patch):
        task = make_task()
        conn.fetchrow.side_effect = [_row(task, version=3)]

        with pytest.raises(ConcurrencyConflict):
            await PostgresTaskStore().update(task.id, 1, {"progress": 10})
        assert conn.fetchrow.await_count == 1

    @pytest.mark.asyncio
    async def test_terminal_row_is_rejected_before_writing(self, conn, pool_patch):
        task = make_task(status=TaskStatus.COMPLETED)
        conn.fetchrow.side_effect = [_row(task)]

        with pytest.raises(ConcurrencyConflict):
            await PostgresTaskStore().update(task.id, 1, {"progress": 100})
        assert conn.fetchrow.await_count == 1

    @pytest.mark.asyncio
    async def test_models_are_bound_as_camel_case_json(self, conn, pool_patch):
        task = make_task()
        plan = ResearchPlan.model_validate(json.loads(plan_json()))
        analysis = BatchAnalysis.model_validate(json.loads(analysis_json("sq1")))
        stored = _row(
            task,
            version=2,
            plan=json.loads(plan_json()),
            batch_analyses={"sq1": json.loads(analysis_json("sq1"))},
        )
        conn.fetchrow.side_effect = [_row(task), stored]

        updated = await PostgresTaskStore().update(
            task.id, 1, {"plan": plan, "batch_analyses": {"sq1": analysis}, "status": TaskStatus.RUNNING}
        )

        sql, *args = conn.fetchrow.await_args_list[1].args
        assert "plan = $3, batch_analyses = $4, status = $5" in sql
        plan_value, analyses_value, status_value = args[2:]
        assert plan_value["planSummary"] == plan.plan_summary
        assert [sq["id"] for sq in plan_value["subQuestions"]] == ["sq1", "sq2", "sq3"]
        assert analyses_value["sq1"]["subQuestionId"] == "sq1"
        assert analyses_value["sq1"]["resonantElements"]["hooks"] == ["I quit my job"]
        assert analyses_value["sq1"]["degraded"] is False
        assert status_value == "running"

        assert updated.version == 2
        assert updated.plan.sub_question_ids == ["sq1", "sq2", "sq3"]
        assert updated.batch_analyses["sq1"].insight_summary == analysis.insight_summary


class TestReads:
    @pytest.mark.asyncio
    async def test_get_decodes_json_text_columns(self, conn, pool_patch):
        task = make_task()
        conn.fetchrow.return_value = _row(
            task,
            parameters=json.dumps(task.parameters),
            plan=plan_json(),
            batch_analyses="{}",
        )

        fetched = await PostgresTaskStore().get(task.id, owner_id="user-1")

        assert fetched.id == task.id
        assert fetched.parameters == task.parameters
        assert fetched.plan.sub_question_ids == ["sq1", "sq2", "sq3"]
        sql, *args = conn.fetchrow.await_args.args
        assert "owner_id = $2" in sql
        assert args == [UUID(task.id), "user-1"]
